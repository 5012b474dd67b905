#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Closed-loop transfer functions of the AO controller and optimization of its gain
against an open-loop turbulence PSD and a WFS noise PSD.
"""

import numpy as np
import scipy.optimize as spo

from aobudget.aoSystem import ConfigurationError, NumericalError

#%%
class clGainOpt:
    """
    Integrator controller with a loop delay, in the z-domain:
        L(z) = g B(z) z^-delay / (1 - z^-1)
        ETF  = 1/(1 + L), NTF = L/(1 + L)
    where B(z) = sum_j b_j z^-j is 1 for the simple integrator and holds the
    linear predictor coefficients otherwise.
    Inputs are:
        - Ts: loop sampling time in s
        - delay: loop delay in frames, 1.5 frames for a pure read-out + compute delay
        - freq: one-sided temporal frequencies in Hz
    """

    # number of points of the coarse gain grid
    nGains = 50

    @property
    def freq(self):
        return self.p_freq

    @freq.setter
    def freq(self,val):
        val = np.asarray(val,dtype=float)
        if val.ndim != 1 or val.size == 0:
            raise ConfigurationError('The frequency vector must be a non-empty 1D array')
        self.p_freq = val
        self.z = np.exp(2*complex(0,1)*np.pi*val*self.Ts)
        self.df = val[1] - val[0] if val.size > 1 else val[0]

    def __init__(self,Ts,delay=1.5,freq=None):
        if not Ts > 0:
            raise ConfigurationError('The loop sampling time must be > 0, got {}'.format(Ts))
        if delay < 0:
            raise ConfigurationError('The loop delay must be >= 0, got {}'.format(delay))
        self.Ts    = Ts
        self.delay = delay
        self.loop  = {'rate':1/Ts,'delay':delay}
        if freq is not None:
            self.freq = freq

    #%% TRANSFER FUNCTIONS
    def _openLoop(self,z,g=1.0,b=None):
        hInt = g/(1.0 - z**(-1.0))
        if b is not None:
            b = np.atleast_1d(b)
            hInt = hInt*np.polyval(b[::-1],z**(-1.0))
        return hInt*z**(-self.delay)

    def openLoop(self,g=1.0,b=None):
        return self._openLoop(self.z,g=g,b=b)

    def clTF(self,g,b=None):
        """ Complex error and noise transfer functions"""
        L = self.openLoop(g=g,b=b)
        etf = 1.0/(1.0 + L)
        ntf = L*etf
        return etf,ntf

    def clTF2(self,g,b=None):
        """ Squared moduli of the error and noise transfer functions"""
        etf,ntf = self.clTF(g,b=b)
        return abs(etf)**2,abs(ntf)**2

    def clVariance(self,g,psdOL,psdN,b=None):
        """ Closed-loop residual variance: turbulence through the ETF plus noise through the NTF"""
        etf2,ntf2 = self.clTF2(g,b=b)
        return np.sum(etf2*psdOL + ntf2*psdN)*self.df

    #%% STABILITY
    def maxStableGain(self,b=None,nPts=2000):
        """ Largest stable gain: -1/Re(L1) at the first phase crossover of the
        open loop without gain L1, searched over (0, fs/2]"""
        fs = 1/self.Ts
        f = np.linspace(fs/2/nPts,fs/2,nPts)

        def L1(fi):
            return self._openLoop(np.exp(2*complex(0,1)*np.pi*fi*self.Ts),b=b)

        l1 = L1(f)
        cross = np.where((np.sign(l1.imag[:-1]) != np.sign(l1.imag[1:])) & (l1.real[1:] < 0))[0]
        if cross.size:
            i = cross[0]
            if l1.imag[i+1] == 0:
                fc = f[i+1]
            else:
                fc = spo.brentq(lambda x: L1(x).imag,f[i],f[i+1],xtol=1e-12)
        elif l1.real[-1] < 0:
            fc = f[-1]
        else:
            raise NumericalError('No phase crossover below the Nyquist frequency: cannot bound the gain')
        re = L1(fc).real
        if not re < 0:
            raise NumericalError('The open loop has no negative real crossing')
        return -1/re

    #%% OPTIMIZATION
    def optGainOpenLoop(self,psdOL,psdN,b=None,gmax=None):
        """
        Gain minimizing the closed-loop residual variance, in (0, gmax).
        A coarse grid brackets the minimum, then a bounded Brent search refines it.
        Returns (gopt, var, gmax).
        """
        psdOL = np.asarray(psdOL,dtype=float)
        psdN  = np.asarray(psdN,dtype=float)
        if psdOL.shape != self.freq.shape or psdN.shape != self.freq.shape:
            raise ConfigurationError('The PSDs must be sampled on the controller frequencies')
        if gmax is None:
            gmax = self.maxStableGain(b=b)

        gains = gmax*np.arange(1,self.nGains)/self.nGains
        var   = np.array([self.clVariance(g,psdOL,psdN,b=b) for g in gains])
        if not np.all(np.isfinite(var)):
            raise NumericalError('Non-finite closed-loop variance')
        # argmin keeps the first, i.e. smallest, gain on ties
        i    = int(np.argmin(var))
        gopt = gains[i]
        vopt = var[i]

        lo = gains[i-1] if i > 0 else gains[0]*1e-3
        hi = gains[i+1] if i < len(gains)-1 else gmax*(1 - 1e-3)
        res = spo.minimize_scalar(lambda g: self.clVariance(g,psdOL,psdN,b=b),
                                  bounds=(lo,hi),method='bounded',
                                  options={'xatol':1e-6*gmax})
        if np.isfinite(res.fun) and res.fun < vopt and res.x < gmax:
            gopt = float(res.x)
            vopt = float(res.fun)
        return gopt,vopt,gmax

    def __repr__(self):
        s = '__ CONTROLLER __\n'
        s += '--------------------------------------------- \n'
        s += '. rate \t\t= %.2f Hz\n'%self.loop['rate']
        s += '. delay \t= %.2f frames\n'%self.loop['delay']
        s += '---------------------------------------------\n'
        return s
