#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command line entry point:
    python -m aobudget --config=myAO.ini --mode=ErrorBudget starMags=[5,10] wfeUnits=nm
"""

import sys
import argparse

from aobudget import __version__
from aobudget.aoSystem import ConfigurationError, NumericalError, fftEnvironment
from aobudget.aoSystem.configFile import loadConfig, parseOverrides
from aobudget.aoAnalysis import aoAnalysis, MODES

def get_parser():
    parser = argparse.ArgumentParser(description='AO ERROR BUDGET AND TEMPORAL PSD ANALYSIS',
                                     formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('--config', help='Path to the .ini or .yml parameter file',
                        default=None, type=str)
    parser.add_argument('--mode', help='Analysis mode: ' + ', '.join(MODES),
                        default=None, type=str)
    parser.add_argument('--outDir', help='Directory of the output files',
                        default='.', type=str)
    parser.add_argument('--fftWorkers', help='Number of FFT worker threads, -1 for all cores',
                        default=None, type=int)
    parser.add_argument('--quiet', help='Do not print the results',
                        action='store_true')
    parser.add_argument('--version', action='version', version='aobudget ' + __version__)
    parser.add_argument('overrides', nargs='*',
                        help='Parameter overrides as key=value, applied over the parameter file')
    return parser

def main(argv=None):
    parser = get_parser()
    args, unknown = parser.parse_known_args(argv)

    try:
        overrides = parseOverrides(args.overrides + unknown)
        if args.mode is not None:
            overrides['mode'] = args.mode
        config,warnings = loadConfig(args.config,overrides)
        verbose = not args.quiet
        if warnings and verbose:
            print('****************************************************')
            print('WARNING: unrecognized config options:')
            for warning in warnings:
                print('   ' + warning)
            print('****************************************************')
        if config.verbose:
            print(config.aosys.dumpAOSystem())
        with fftEnvironment(args.fftWorkers) as fftenv:
            aoAnalysis(config,outDir=args.outDir,fftenv=fftenv,verbose=verbose).execute()
    except (ConfigurationError,NumericalError,OSError) as err:
        print('ERROR: %s'%err,file=sys.stderr)
        return 1
    return 0

if __name__=='__main__':
    sys.exit(main())
