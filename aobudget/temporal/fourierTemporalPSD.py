#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Temporal PSDs of the Fourier modes under the frozen flow hypothesis, WFS noise
PSD, and the single-mode closed-loop analysis.
"""

# IMPORTING PYTHON LIBRAIRIES
import numpy as np
from astropy.table import Table

# IMPORTING AOBUDGET MODULES
from aobudget.aoSystem import ConfigurationError, checkFinite, trapz
import aobudget.aoSystem.FourierUtils as FourierUtils
from aobudget.temporal.rtc import clGainOpt
from aobudget.temporal.linearPredictor import linearPredictor

#%% FUNCTIONS
def frequencyGrid(fs,dfreq):
    """ One-sided frequencies dfreq, 2 dfreq, ..., fs/2"""
    if not dfreq > 0:
        raise ConfigurationError('dfreq must be > 0 to set the frequency sampling, got {}'.format(dfreq))
    if not fs > 0:
        raise ConfigurationError('The loop frequency must be > 0, got {}'.format(fs))
    nf = int(np.floor(0.5*fs/dfreq + 1e-9))
    if nf < 1:
        raise ConfigurationError('dfreq must be smaller than fs/2')
    return dfreq*np.arange(1,nf+1)

def wfsNoisePSD(nfreq,beta_p,Fg,tau,npix,Fbg,ron,lamRatio=1.0):
    """ White one-sided WFS noise PSD whose integral over [0, 1/(2 tau)] is the
    measurement variance, scaled by lamRatio^2 = (lam_wfs/lam_sci)^2"""
    F   = Fg*tau
    var = beta_p**2*(F + npix*(Fbg*tau + ron**2))/F**2*lamRatio**2
    checkFinite(var,'WFS noise variance')
    return 2*tau*var*np.ones(nfreq)

#%% CLASS
class fourierTemporalPSD:
    """
    Temporal PSD engine for an aoSystem.
    The open-loop PSD of the (m,n) mode is the spatial PSD of each layer seen
    through the square pupil and translated at the layer wind speed: the
    temporal frequency f samples the spatial frequency f/v along the wind,
    and the spatial frequencies across the wind are integrated.
    """

    # sampling of the integral across the wind, in units of 1/D
    nPerD   = 8
    # half-width of the integration range beyond |k|, in units of 1/D
    wingsD  = 10

    def __init__(self,aosys,fftenv=None,verbose=False):
        self.aosys   = aosys
        self.fftenv  = fftenv
        self.verbose = verbose

    @property
    def fs(self):
        if not self.aosys.minTauWFS > 0:
            raise ConfigurationError('minTauWFS must be > 0 to set the loop frequency')
        return 1/self.aosys.minTauWFS

    def autoFmax(self,m,n):
        """ Frequency above which the PSD follows the -17/3 power law"""
        k = np.hypot(m,n)/self.aosys.D
        return 150 + 2*np.max(self.aosys.atm.wSpeed)*k

    def window(self,qx,qy,m,n,p=1):
        """ Squared response of the cosine (p = +1) or sine (p = -1) mode of
        the square pupil at the spatial frequency (qx,qy)"""
        D = self.aosys.D
        kx,ky = m/D,n/D
        return 0.5*(np.sinc(D*(qx-kx))*np.sinc(D*(qy-ky))
                    + p*np.sinc(D*(qx+kx))*np.sinc(D*(qy+ky)))**2

    def integrand(self,qx,qy,m,n,l,p=1):
        """ Piston and tilt filtered spectrum of the layer l seen through the
        mode window"""
        aosys = self.aosys
        q   = np.hypot(qx,qy)
        phi = aosys.psd.layerSpectrum(aosys.atm,q,aosys.lam_sci,secZeta=aosys.secZeta,
                                      lam_wfs=aosys.lam_wfs,layers=l)[0]
        return phi*FourierUtils.tiltFilter(aosys.D,q)*self.window(qx,qy,m,n,p)

    def layerNorm(self,m,n,l,p=1):
        """ Scale making the integral of the layer PSD over all frequencies
        equal to the spatial variance of the (m,n) mode for the layer l"""
        aosys = self.aosys
        D  = aosys.D
        K  = np.hypot(m,n)/D + self.wingsD/D
        dk = 1/(self.nPerD*D)
        # cell centers, q = 0 excluded
        nq = int(np.ceil(K/dk))
        q  = dk*(np.arange(-nq,nq) + 0.5)
        qx,qy = np.meshgrid(q,q,indexing='ij')
        total = np.sum(self.integrand(qx,qy,m,n,l,p))*dk**2
        target = aosys.psd.layerSpectrum(aosys.atm,np.hypot(m,n)/D,aosys.lam_sci,secZeta=aosys.secZeta,
                                         lam_wfs=aosys.lam_wfs,layers=l)[0]/D**2
        if not total > 0:
            return 0.
        return float(target/total)

    def layerPSD(self,freq,m,n,l,p=1):
        """ One-sided temporal PSD of the (m,n) mode due to the layer l.
        p = +1 for the cosine mode, -1 for the sine mode.
        The shape comes from the windowed spectrum integrated across the
        wind, the level from layerNorm."""
        atm = self.aosys.atm
        v   = atm.wSpeed[l]
        if v <= 0:
            return np.zeros(freq.shape)

        D  = self.aosys.D
        K  = np.hypot(m,n)/D + self.wingsD/D
        dk = 1/(self.nPerD*D)
        kw = np.arange(-K,K+dk/2,dk)[None,:]
        ku = (freq/v)[:,None]
        cth,sth = np.cos(atm.wDir[l]),np.sin(atm.wDir[l])
        qx = ku*cth - kw*sth
        qy = ku*sth + kw*cth

        # one-sided: factor 2
        psd = 2/v*trapz(self.integrand(qx,qy,m,n,l,p),dx=dk,axis=1)
        return self.layerNorm(m,n,l,p)*psd

    def multiLayerPSD(self,freq,m,n,p=1,fmax=0):
        """
        Open-loop temporal PSD of the (m,n) mode summed over the layers.
        Above fmax the PSD follows a f^(-17/3) tail anchored at fmax;
        fmax <= 0 selects autoFmax.
        """
        freq = np.asarray(freq,dtype=float)
        if fmax is None or fmax <= 0:
            fmax = self.autoFmax(m,n)
        # last explicitly computed frequency
        nc = max(int(np.searchsorted(freq,fmax,side='right')),1)

        psd = np.zeros(freq.shape)
        for l in range(self.aosys.atm.nL):
            psd[:nc] += self.layerPSD(freq[:nc],m,n,l,p=p)
        if nc < freq.size:
            psd[nc:] = psd[nc-1]*(freq[nc:]/freq[nc-1])**(-17/3)
        return checkFinite(psd,'Open-loop PSD of mode (%d,%d)'%(m,n))

    def noisePSD(self,freq,m,n,starMag=None,tau=None):
        """ WFS noise PSD of the (m,n) mode, by default at the loop frequency"""
        aosys = self.aosys
        if tau is None:
            tau = 1/self.fs
        return wfsNoisePSD(len(freq),aosys.beta_p(m,n),aosys.Fg(starMag),tau,aosys.npix_wfs,
                           aosys.Fbg,aosys.ron_wfs,lamRatio=aosys.lam_wfs/aosys.lam_sci)

    def controller(self,freq):
        """ clGainOpt at the loop frequency with 1.5 frames of delay plus deltaTau"""
        fs = self.fs
        return clGainOpt(1/fs,delay=1.5 + self.aosys.deltaTau*fs,freq=freq)

    def temporalPSD(self,k_m,k_n,dfreq,fmax=0,lpNc=0,starMag=None):
        """
        Single mode analysis: open-loop and noise PSDs, optimal integrator gain
        and, when lpNc > 1, optimal linear predictor.
        Returns an astropy Table with the columns freq, PSD-OL, PSD-N, ETF-SI,
        NTF-SI, ETF-LP, NTF-LP; the optimization results are in its meta.
        LP values are -1 when the predictor is not computed.
        """
        fs    = self.fs
        freq  = frequencyGrid(fs,dfreq)
        psdOL = self.multiLayerPSD(freq,k_m,k_n,1,fmax)
        psdN  = self.noisePSD(freq,k_m,k_n,starMag=starMag)

        go = self.controller(freq)
        goptSI,varSI,gmaxSI = go.optGainOpenLoop(psdOL,psdN)
        etfSI,ntfSI = go.clTF2(goptSI)

        goptLP = varLP = gmaxLP = -1
        etfLP = -np.ones(freq.shape)
        ntfLP = -np.ones(freq.shape)
        coefs = []
        if lpNc > 1:
            gmaxLP,goptLP,varLP,b,_ = linearPredictor(lpNc).regularizeCoefficients(go,psdOL,psdN)
            etfLP,ntfLP = go.clTF2(goptLP,b=b)
            coefs = b.tolist()

        tab = Table([freq,psdOL,psdN,etfSI,ntfSI,etfLP,ntfLP],
                    names=('freq','PSD-OL','PSD-N','ETF-SI','NTF-SI','ETF-LP','NTF-LP'))
        tab.meta['k_m']    = k_m
        tab.meta['k_n']    = k_n
        tab.meta['var_OL'] = float(np.sum(psdOL)*go.df)
        tab.meta['gopt_SI']= float(goptSI)
        tab.meta['gmax_SI']= float(gmaxSI)
        tab.meta['var_SI'] = float(varSI)
        tab.meta['lpNc']   = int(lpNc)
        tab.meta['gopt_LP']= float(goptLP)
        tab.meta['gmax_LP']= float(gmaxLP)
        tab.meta['var_LP'] = float(varLP)
        tab.meta['coef_LP']= coefs

        if self.verbose:
            print('# mode (%d,%d): var OL = %.3e, opt-gain SI = %.3f, var SI = %.3e, opt-gain LP = %.3f, var LP = %.3e'
                  %(k_m,k_n,tab.meta['var_OL'],goptSI,varSI,goptLP,varLP))
        return tab
