import os
import pathlib

__version__ = '0.1.0'

# Define the root path of the aobudget package
PATH_AOBUDGET = str(pathlib.Path(__file__).parent.absolute())

def resolve_path(path_value, path_root=''):
    """
    Resolve a file path for a configuration parameter.
    - path_value: the value from the config file
    - path_root: the root directory (can be empty)
    Returns the resolved absolute path or '' if empty.
    """
    if not path_value or path_value == '':
        return ''
    if path_root == '' and path_value.lstrip('/').startswith('aoSystem'):
        return os.path.join(PATH_AOBUDGET, path_value.lstrip('/'))
    return os.path.join(path_root, path_value)
