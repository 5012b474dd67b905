"""
Installs the aobudget package and its aobudget command:
    aobudget --config=myAO.ini --mode=ErrorBudget
or equivalently python -m aobudget ...
"""

from setuptools import setup, find_packages

setup(name='aobudget',
      version='0.1.0',
      description='Adaptive optics error budget and temporal PSD analysis',
      packages=find_packages(exclude=['tests','tests.*']),
      package_data={'aobudget.aoSystem':['parFiles/*.ini']},
      python_requires='>=3.8',
      install_requires=['numpy','scipy','astropy','pyyaml','tqdm','joblib'],
      extras_require={'test':['pytest']},
      entry_points={'console_scripts':['aobudget=aobudget.__main__:main']})
