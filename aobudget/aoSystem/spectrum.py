#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Von Kármán spatial power spectrum with optional tip/tilt removal,
scintillation and chromatic (dispersion) components.
"""

import numpy as np

from aobudget.aoSystem import ConfigurationError
import aobudget.aoSystem.FourierUtils as FourierUtils

PSD_COMPONENTS = ('phase','amplitude','dispPhase','dispAmplitude')

class vonKarmanSpectrum:
    """
    Spatial PSD of the turbulent phase in rad^2 m^2.
        - subTipTilt: remove piston and tip/tilt over a pupil of diameter D
        - scintillation: split the PSD between phase (cos^2) and amplitude (sin^2)
          with the Fresnel propagation from each layer
        - component: phase, amplitude, dispPhase or dispAmplitude
    The dispersion components give the residual left after a correction
    measured at lam_wfs is applied at lam_sci.
    """

    @property
    def component(self):
        return self.p_component

    @component.setter
    def component(self,val):
        if val not in PSD_COMPONENTS:
            raise ConfigurationError("Unknown PSD component '{}', must be one of {}"
                                     .format(val,', '.join(PSD_COMPONENTS)))
        self.p_component = val

    def __init__(self,subTipTilt=False,scintillation=False,component='phase',D=1.0):
        self.subTipTilt    = subTipTilt
        self.scintillation = scintillation
        self.component     = component
        self.D             = D

    def layerSpectrum(self,atm,k,lam_sci,secZeta=1.0,lam_wfs=None,component=None,layers=None):
        """ PSD split into per-layer contributions, shape (nL,) + k.shape.
        layers selects a subset of the layers by index."""
        if component is None:
            component = self.component
        elif component not in PSD_COMPONENTS:
            raise ConfigurationError("Unknown PSD component '{}'".format(component))

        k   = np.asarray(k,dtype=float)
        psd = secZeta*atm.spectrum(k,lam_sci)
        if self.subTipTilt:
            psd = psd*FourierUtils.tiltFilter(self.D,k)

        w = atm.weights
        z = atm.heights
        if layers is not None:
            w = np.atleast_1d(w[layers])
            z = np.atleast_1d(z[layers])
        w  = w.reshape((-1,) + (1,)*k.ndim)
        z  = z.reshape((-1,) + (1,)*k.ndim)
        fr = np.pi*z*secZeta*k**2

        if component == 'phase':
            if self.scintillation:
                fact = np.cos(fr*lam_sci)**2
            else:
                fact = np.ones(fr.shape)
        elif component == 'amplitude':
            if self.scintillation:
                fact = np.sin(fr*lam_sci)**2
            else:
                fact = np.zeros(fr.shape)
        else:
            if lam_wfs is None:
                raise ConfigurationError('The dispersion components need the WFS wavelength')
            if component == 'dispPhase':
                fact = (np.cos(fr*lam_sci) - np.cos(fr*lam_wfs))**2
            else:
                fact = (np.sin(fr*lam_sci) - np.sin(fr*lam_wfs))**2

        return w*fact*psd

    def __call__(self,atm,k,lam_sci,secZeta=1.0,lam_wfs=None,component=None):
        return np.sum(self.layerSpectrum(atm,k,lam_sci,secZeta=secZeta,
                                         lam_wfs=lam_wfs,component=component),axis=0)

    def setupDict(self):
        return {'subTipTilt':self.subTipTilt,'scintillation':self.scintillation,
                'component':self.component}

    def __repr__(self):
        s = '___ SPATIAL PSD ___\n'
        s += '. model \t= von Karman\n'
        s += '. subTipTilt \t= %s\n'%self.subTipTilt
        s += '. scintillation \t= %s\n'%self.scintillation
        s += '. component \t= %s\n'%self.component
        return s
