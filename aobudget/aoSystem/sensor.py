#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Wavefront sensor sensitivity models.
"""

import numpy as np

from aobudget.aoSystem import ConfigurationError

WFS_TYPES = {'ideal':'idealWFS',
             'idealwfs':'idealWFS',
             'unmodpywfs':'unmodPyWFS',
             'asymmodpywfs':'asympModPyWFS',
             'asympmodpywfs':'asympModPyWFS'}

class sensor:
    """
    Wavefront sensor class. The sensor type is one of:
        - idealWFS: photon-noise limited sensor, beta_p = 1 for every mode
        - unmodPyWFS: unmodulated pyramid, beta_p = sqrt(2)
        - asympModPyWFS: modulated pyramid in its asymptotic regime, beta_p = 2 sqrt(2)
    beta_p scales the photon noise propagated to a Fourier mode; it is the
    only thing that distinguishes the sensors.
    """

    def __init__(self, wfstype='idealWFS', tag='WAVEFRONT SENSOR'):
        key = str(wfstype).replace('-','').replace('_','').lower()
        if key not in WFS_TYPES:
            raise ConfigurationError("Unknown WFS type '{}', must be one of idealWFS, unmodPyWFS, asympModPyWFS"
                                     .format(wfstype))
        self.wfstype = WFS_TYPES[key]
        self.tag = tag

    def beta_p(self, m, n):
        """ Photon noise sensitivity of the sensor for the spatial frequency (m,n)."""
        if self.wfstype == 'unmodPyWFS':
            beta = np.sqrt(2)
        elif self.wfstype == 'asympModPyWFS':
            beta = 2*np.sqrt(2)
        else:
            beta = 1.0
        return beta*np.ones(np.broadcast(m,n).shape) if np.ndim(m) or np.ndim(n) else beta

    def __repr__(self):
        s = '__ ' + self.tag + ' __\n' + \
            '--------------------------------------------- \n'
        s += '. type \t\t= %s\n'%self.wfstype
        s += '. beta_p \t= %.4f\n'%self.beta_p(1,0)
        s += '---------------------------------------------\n'
        return s
