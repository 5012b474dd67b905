#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Linear predictor controller: predictor coefficients from the Yule-Walker
equations, regularized by the WFS noise.
"""

import numpy as np
from scipy.linalg import solve_toeplitz, LinAlgError

from aobudget.aoSystem import ConfigurationError, NumericalError

#%%
class linearPredictor:
    """
    Linear predictor of order Nc. The coefficients predict the next sample of the
    measurement from the Nc last ones, using the autocorrelation of
    psdOL + r psdN. They are normalized to a unit DC gain so that the
    controller keeps the integral action of the integrator.
    The regularization r is swept over regGrid, in units of the noise PSD.
    """

    def __init__(self,Nc,regGrid=None):
        if Nc <= 1:
            raise ConfigurationError('The linear predictor needs more than 1 coefficient, got {}'.format(Nc))
        self.Nc = int(Nc)
        if regGrid is None:
            regGrid = np.logspace(-3,3,25)
        self.regGrid = np.asarray(regGrid,dtype=float)

    def autocorrelation(self,psd,freq,Ts):
        """ Autocorrelation at lags 0..Nc frames of a one-sided PSD"""
        df   = freq[1] - freq[0] if freq.size > 1 else freq[0]
        lags = np.arange(self.Nc + 1)[:,None]
        return np.sum(psd[None,:]*np.cos(2*np.pi*freq[None,:]*lags*Ts),axis=1)*df

    def calcCoefficients(self,psd,freq,Ts):
        """ Yule-Walker predictor coefficients, normalized to sum to 1"""
        R = self.autocorrelation(psd,freq,Ts)
        if not R[0] > 0:
            raise NumericalError('The PSD has no power: cannot build a predictor')
        try:
            a = solve_toeplitz(R[:-1],R[1:])
        except LinAlgError as err:
            raise NumericalError('Singular Yule-Walker system: {}'.format(err))
        s = np.sum(a)
        if not np.isfinite(s) or abs(s) < 1e-12:
            raise NumericalError('Predictor coefficients cannot be normalized')
        return a/s

    def regularizeCoefficients(self,go,psdOL,psdN):
        """
        Sweep the regularization, optimize the gain of each predictor with the
        clGainOpt go, and keep the lowest residual variance. On ties the
        smaller regularization is kept.
        Returns (gmax, gopt, var, b, r).
        """
        best = None
        for r in self.regGrid:
            try:
                b = self.calcCoefficients(psdOL + r*psdN,go.freq,go.Ts)
                gopt,var,gmax = go.optGainOpenLoop(psdOL,psdN,b=b)
            except NumericalError:
                continue
            if best is None or var < best[2]:
                best = (gmax,gopt,var,b,r)
        if best is None:
            raise NumericalError('No stable linear predictor over the regularization sweep')
        return best
