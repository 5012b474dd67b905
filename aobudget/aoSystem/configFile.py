#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration loading: .ini or .yml parameter files, command line overrides and
the ordered steps that apply them to an aoSystem.

The steps always run in the order model, atmosphere, PSD, system, temporal,
whatever the order of the keys in the file. Keys that no step consumes are
returned as warnings.
"""

# IMPORTING PYTHON LIBRAIRIES
import os.path as ospath
from configparser import ConfigParser
import numpy as np

import yaml

# IMPORTING AOBUDGET MODULES
from aobudget import PATH_AOBUDGET, resolve_path
from aobudget.aoSystem import ConfigurationError
from aobudget.aoSystem.atmosphere import atmosphere
from aobudget.aoSystem.aoSystem import aoSystem

MODELS = {'Guyon2005':'Guyon2005.ini',
          'MagAOX':'MagAOX.ini',
          'GMagAOX':'GMagAOX.ini'}

SECTION_KEYS = {
    'main':       ('mode','wfeUnits','mnMap','model','setupOutFile','verbose'),
    'atmosphere': ('lam_0','layer_Cn2','r_0','L_0','layer_v_wind','layer_dir','layer_z',
                   'h_obs','H','v_wind','z_mean'),
    'PSD':        ('subTipTilt','scintillation','component'),
    'system':     ('wfs','D','d_min','optd','optd_delta','F0','lam_wfs','npix_wfs','ron_wfs',
                   'bin_npix','Fbg','tauWFS','minTauWFS','maxTauWFS','deltaTau','optTau',
                   'lam_sci','zeta','fit_mn_max','ncp_wfe','ncp_alpha','starMag','starMags',
                   'circularLimit'),
    'temporal':   ('fmax','dfreq','k_m','k_n','gridDir','subDir','lpNc','uncontrolledLifetimes',
                   'lifetimeTrials','writePSDs','seed','nJobs')}

BOOL_KEYS = ('optd','bin_npix','optTau','circularLimit','subTipTilt','scintillation',
             'uncontrolledLifetimes','writePSDs','verbose')

# names allowed inside the evaluated values
_EVAL_NAMES = {'pi':np.pi, 'inf':np.inf}

#%% PARSING
def evalValue(text):
    """ Value of a parameter given as text: a Python literal or arithmetic
    expression, or the raw string when it is neither"""
    if not isinstance(text,str):
        return text
    try:
        return eval(text,{'__builtins__':{}},dict(_EVAL_NAMES))
    except (NameError,SyntaxError,TypeError,AttributeError):
        return text.strip()
    except ArithmeticError as err:
        raise ConfigurationError("Cannot evaluate '{}': {}".format(text,err))

def toBool(val):
    if isinstance(val,str):
        low = val.strip().lower()
        if low in ('true','yes','1','on'):
            return True
        if low in ('false','no','0','off'):
            return False
        raise ConfigurationError("'{}' is not a boolean".format(val))
    return bool(val)

def readParFile(path_config):
    """ Read a .ini or .yml parameter file into a {section:{key:value}} map"""
    if ospath.isfile(path_config) == False:
        raise ConfigurationError('The parameter file (.ini or .yml) could not be found: {}'.format(path_config))

    if path_config[-4::]=='.ini':
        config = ConfigParser()
        config.optionxform = str
        config.read(path_config)
        my_data_map = {}
        for section in config.sections():
            my_data_map[section] = {}
            for name,value in config.items(section):
                my_data_map[section].update({name:evalValue(value)})

    elif path_config[-4::]=='.yml' or path_config[-5::]=='.yaml':
        with open(path_config) as f:
            my_yaml_dict = yaml.safe_load(f)
        if my_yaml_dict is None:
            my_yaml_dict = {}
        if not isinstance(my_yaml_dict,dict):
            raise ConfigurationError('The .yml file must hold a map of sections')
        my_data_map = {}
        for section,values in my_yaml_dict.items():
            if not isinstance(values,dict):
                raise ConfigurationError("The section '{}' must be a map of options".format(section))
            my_data_map[section] = {name:evalValue(value) for name,value in values.items()}
    else:
        raise ConfigurationError('The parameter file must be a .ini or .yml file')

    return my_data_map

def sectionOf(key):
    for section,keys in SECTION_KEYS.items():
        if key in keys:
            return section
    return None

def parseOverrides(args):
    """ Map of command line overrides given as 'key=value' or '--key=value' strings"""
    overrides = {}
    for arg in args:
        arg = arg.lstrip('-')
        if '=' not in arg:
            raise ConfigurationError("Command line overrides must read key=value, got '{}'".format(arg))
        key,value = arg.split('=',1)
        overrides[key.strip()] = evalValue(value)
    return overrides

def mergeOverrides(data_map,overrides):
    """ Merge flat command line overrides into the sections that own the keys.
    Unknown keys go to the 'main' section and are reported as unused."""
    merged = {section:dict(values) for section,values in data_map.items()}
    for key,value in overrides.items():
        section = sectionOf(key)
        if section is None:
            section = 'main'
        merged.setdefault(section,{})[key] = value
    return merged

#%% RESOLVED CONFIGURATION
class aoConfig():
    """
    Resolved configuration of an analysis run: the aoSystem plus the run
    options (mode, output units, map size, star magnitudes, temporal options).
    """
    def __init__(self,aosys=None):
        if aosys is None:
            aosys = aoSystem()
        self.aosys         = aosys
        self.mode          = 'C2Raw'
        self.wfeUnits      = 'rad'
        self.mnMap         = 50
        self.model         = 'MagAOX'
        self.setupOutFile  = 'aoAnalysisSetup.txt'
        self.verbose       = False
        self.starMags      = []
        # temporal
        self.fmax                  = 0.0
        self.dfreq                 = 0.1
        self.k_m                   = 1
        self.k_n                   = 0
        self.gridDir               = ''
        self.subDir                = ''
        self.lpNc                  = 0
        self.uncontrolledLifetimes = False
        self.lifetimeTrials        = 0
        self.writePSDs             = False
        self.seed                  = None
        self.nJobs                 = 1

    @property
    def mags(self):
        """ Star magnitudes to analyze: starMags, or the single starMag"""
        if len(self.starMags):
            return list(self.starMags)
        return [self.aosys.starMag]

    def setupDict(self):
        setup = self.aosys.setupDict()
        setup['main'] = {'mode':self.mode,'wfeUnits':self.wfeUnits,'mnMap':self.mnMap,
                         'model':self.model,'setupOutFile':self.setupOutFile}
        setup['system']['starMags'] = list(self.starMags)
        setup['temporal'] = {key:getattr(self,key) for key in SECTION_KEYS['temporal']}
        return setup

    def dump(self):
        """ Text dump of the resolved configuration, readable back as a .ini file"""
        s = ''
        for section,values in self.setupDict().items():
            s += '[%s]\n'%section
            for key,value in values.items():
                if isinstance(value,np.generic):
                    value = value.item()
                s += '%s = %r\n'%(key,value)
            s += '\n'
        return s

#%% APPLY STEPS
def _newLayers(atm,Cn2,lam_0,opts,warnings):
    """ Rebuild the layer set when layer_Cn2 changes the number of layers"""
    nL = len(Cn2)
    missing = [key for key in ('layer_z','layer_v_wind','layer_dir') if key not in opts]
    if missing:
        warnings.append('layer_Cn2 changes the number of layers from {} to {}: {} set to 0'
                        .format(atm.nL,nL,', '.join(missing)))
    heights = opts.pop('layer_z',np.zeros(nL))
    wSpeed  = opts.pop('layer_v_wind',np.zeros(nL))
    wDir    = opts.pop('layer_dir',np.zeros(nL))
    new = atmosphere(atm.lam_0,atm.r0,Cn2,heights,wSpeed=wSpeed,wDir=wDir,
                     L0=atm.L0,h_obs=atm.h_obs,H=atm.H,verbose=atm.verbose)
    if lam_0 is not None and lam_0 > 0:
        new.set_layer_Cn2(Cn2,lam_0)
    return new

def applyAtmosphere(aosys,opts,warnings):
    # lam_0 calibrates both Cn2 and r_0; r_0 overrides Cn2 when both are set
    lam_0 = opts.pop('lam_0',0)
    atm = aosys.atm
    if 'layer_Cn2' in opts:
        Cn2 = np.atleast_1d(np.array(opts.pop('layer_Cn2'),dtype=float))
        if len(Cn2) != atm.nL:
            atm = _newLayers(atm,Cn2,lam_0,opts,warnings)
            aosys.atm = atm
        else:
            atm.set_layer_Cn2(Cn2,lam_0)
    if 'r_0' in opts:
        atm.set_r0(opts.pop('r_0'),lam_0)
    if 'L_0' in opts:
        atm.L0 = opts.pop('L_0')
    if 'layer_v_wind' in opts:
        atm.set_layer_v_wind(np.atleast_1d(opts.pop('layer_v_wind')))
    if 'layer_dir' in opts:
        atm.set_layer_dir(np.atleast_1d(opts.pop('layer_dir')))
    if 'layer_z' in opts:
        atm.set_layer_z(np.atleast_1d(opts.pop('layer_z')))
    if 'h_obs' in opts:
        atm.h_obs = opts.pop('h_obs')
    if 'H' in opts:
        atm.H = opts.pop('H')
    # moments rescale the layer values set above
    if 'v_wind' in opts:
        atm.rescale_wind_moment(opts.pop('v_wind'))
    if 'z_mean' in opts:
        atm.rescale_altitude_moment(opts.pop('z_mean'))

def applyPSD(aosys,opts,warnings):
    if 'subTipTilt' in opts:
        aosys.psd.subTipTilt = toBool(opts.pop('subTipTilt'))
    if 'scintillation' in opts:
        aosys.psd.scintillation = toBool(opts.pop('scintillation'))
    if 'component' in opts:
        aosys.psd.component = opts.pop('component')

def applySystem(aosys,opts,warnings,config=None):
    if 'wfs' in opts:
        aosys.wfs = opts.pop('wfs')
    if 'starMags' in opts:
        starMags = opts.pop('starMags')
        if config is not None:
            config.starMags = [float(mag) for mag in np.atleast_1d(starMags)]
    for key in SECTION_KEYS['system']:
        if key in opts:
            value = opts.pop(key)
            if key in BOOL_KEYS:
                value = toBool(value)
            elif key == 'fit_mn_max':
                value = int(value)
            setattr(aosys,key,value)

def applyTemporal(config,opts,warnings):
    for key in SECTION_KEYS['temporal']:
        if key in opts:
            value = opts.pop(key)
            if key in BOOL_KEYS:
                value = toBool(value)
            elif key in ('lpNc','lifetimeTrials','nJobs','k_m','k_n'):
                value = int(value)
            elif key in ('gridDir','subDir'):
                value = '' if value is None else str(value)
            setattr(config,key,value)

def applyMain(config,opts,warnings):
    for key in ('mode','wfeUnits','mnMap','setupOutFile','verbose'):
        if key in opts:
            value = opts.pop(key)
            if key == 'verbose':
                value = toBool(value)
            elif key == 'mnMap':
                value = int(value)
            setattr(config,key,value)
    if config.wfeUnits not in ('rad','nm'):
        raise ConfigurationError("wfeUnits must be 'rad' or 'nm', got '{}'".format(config.wfeUnits))
    if not config.mnMap > 0:
        raise ConfigurationError('mnMap must be > 0, got {}'.format(config.mnMap))

def modelPath(name):
    if name in MODELS:
        return ospath.join(PATH_AOBUDGET,'aoSystem','parFiles',MODELS[name])
    path = resolve_path(name)
    if ospath.isfile(path):
        return path
    raise ConfigurationError("Unknown model '{}', must be one of {}".format(name,', '.join(MODELS)))

def loadModel(aosys,name):
    """ Apply a named parameter set to aosys. Keys of the parameter file that
    are not model parameters raise a ConfigurationError."""
    data_map = readParFile(modelPath(name))
    warnings = []
    opts = dict(data_map.get('atmosphere',{}))
    applyAtmosphere(aosys,opts,warnings)
    unused = list(opts)
    opts = dict(data_map.get('PSD',{}))
    applyPSD(aosys,opts,warnings)
    unused += list(opts)
    opts = dict(data_map.get('system',{}))
    applySystem(aosys,opts,warnings)
    unused += list(opts)
    if unused:
        raise ConfigurationError("Unknown options in model '{}': {}".format(name,', '.join(unused)))
    return aosys

def applyConfig(data_map,aosys=None):
    """
    Apply a {section:{key:value}} map to a new aoConfig.
    Returns the resolved aoConfig and the list of warnings.
    """
    config   = aoConfig(aosys)
    warnings = []
    sections = {section:dict(values) for section,values in data_map.items()}
    for section in sections:
        if section not in SECTION_KEYS:
            warnings.append("unrecognized section '{}'".format(section))

    main = sections.get('main',{})
    # models come first so that every other option modifies them
    if 'model' in main:
        config.model = main.pop('model')
    if config.model:
        loadModel(config.aosys,config.model)

    steps = [('atmosphere',lambda opts: applyAtmosphere(config.aosys,opts,warnings)),
             ('PSD',       lambda opts: applyPSD(config.aosys,opts,warnings)),
             ('system',    lambda opts: applySystem(config.aosys,opts,warnings,config)),
             ('temporal',  lambda opts: applyTemporal(config,opts,warnings)),
             ('main',      lambda opts: applyMain(config,opts,warnings))]
    for section,step in steps:
        opts = sections.get(section,{})
        step(opts)
        for key in opts:
            warnings.append("unrecognized config option '{}' in section '{}'".format(key,section))

    return config,warnings

def loadConfig(path_config=None,overrides=None,aosys=None):
    """
    Read the parameter file, merge the command line overrides and apply them.
        - path_config: .ini or .yml file, or None
        - overrides: {key:value} map or list of 'key=value' strings
    Returns (config, warnings).
    """
    data_map = {}
    if path_config:
        data_map = readParFile(path_config)
    if overrides:
        if not isinstance(overrides,dict):
            overrides = parseOverrides(overrides)
        data_map = mergeOverrides(data_map,overrides)
    return applyConfig(data_map,aosys=aosys)
