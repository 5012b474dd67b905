#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Analysis modes of aobudget: variance maps and profiles, error budget, Strehl,
temporal PSDs and the PSD grid pipeline.
"""

# IMPORTING PYTHON LIBRAIRIES
import os
import copy
import numpy as np
from astropy.io import fits
from astropy.table import Table

# IMPORTING AOBUDGET MODULES
from aobudget.aoSystem import ConfigurationError, fftEnvironment
import aobudget.aoSystem.FourierUtils as FourierUtils
from aobudget.temporal.fourierTemporalPSD import fourierTemporalPSD
from aobudget.temporal.psdGrid import psdGrid

TERMS = range(8)

MODES = tuple(['C%d%s'%(k,kind) for k in TERMS for kind in ('Raw','Map')]) \
      + ('CAllRaw','CProfAll','ErrorBudget','Strehl','temporalPSD','temporalPSDGrid','temporalPSDGridAnalyze')

BUDGET_COLUMNS = ('mag','d_opt','measurement','timeDelay','fitting','chromScintOPD',
                  'chromIndex','dispAnisoOPD','ncp','strehl')

#%%
class aoAnalysis:
    """
    Run one analysis mode on a resolved aoConfig.
    Files are written in outDir; the setup dump is written to
    config.setupOutFile once the mode succeeds.
    """

    def __init__(self,config,outDir='.',fftenv=None,verbose=False):
        self.config  = config
        self.aosys   = config.aosys
        self.outDir  = outDir
        self.fftenv  = fftenv if fftenv is not None else fftEnvironment()
        self.verbose = verbose

    def path(self,name):
        os.makedirs(self.outDir,exist_ok=True)
        return os.path.join(self.outDir,name)

    def execute(self,mode=None):
        """ Run the mode (config.mode by default) and return its result"""
        if mode is None:
            mode = self.config.mode
        if mode not in MODES:
            raise ConfigurationError("Unknown mode '{}', must be one of {}".format(mode,', '.join(MODES)))

        if mode[0] == 'C' and mode[1].isdigit():
            k = int(mode[1])
            if mode.endswith('Raw'):
                res = self.CRaw(k)
            else:
                res = self.CMap(k)
        else:
            res = getattr(self,mode)()

        if self.config.setupOutFile:
            with open(self.path(self.config.setupOutFile),'w') as f:
                f.write(self.config.dump())
        return res

    #%% VARIANCE MAPS
    def varianceMap(self,k):
        mnMap = self.config.mnMap
        return self.aosys.CMap(k,np.zeros((2*mnMap+1,2*mnMap+1)))

    def CRaw(self,k):
        """ Raw map of C<k>, written to C<k>Raw.fits, and its profile along m"""
        im = self.varianceMap(k)
        fits.PrimaryHDU(im).writeto(self.path('C%dRaw.fits'%k),overwrite=True)
        prof = self.aosys.C_(k,np.arange(self.aosys.fit_mn_max),0)
        if self.verbose:
            for i,val in enumerate(prof):
                print('%d %g'%(i,val))
        return im

    def CMap(self,k):
        """ C<k> map convolved with the Airy pattern, written to C<k>Map.fits"""
        im  = self.varianceMap(k)
        img = FourierUtils.varmapToImage(im,FourierUtils.airyPSF(im.shape))
        fits.PrimaryHDU(img).writeto(self.path('C%dMap.fits'%k),overwrite=True)
        if self.verbose:
            c = self.config.mnMap
            for i in range(self.config.mnMap):
                print('%d %g'%(i,img[c,c+i]))
        return img

    def CAllRaw(self):
        """ Profiles of every term along m"""
        m   = np.arange(self.aosys.fit_mn_max)
        tab = Table([m],names=('m',))
        for k in TERMS:
            tab['C%d'%k] = self.aosys.C_(k,m,0)
        tab.write(self.path('CAllRaw.txt'),format='ascii.commented_header',overwrite=True)
        if self.verbose:
            tab.pprint(max_lines=-1,max_width=-1)
        return tab

    def CProfAll(self):
        """ Profiles of every term convolved with the Airy pattern"""
        mnMap = self.config.mnMap
        tab = Table([np.arange(mnMap)],names=('sep',))
        psf = None
        for k in TERMS:
            im = self.varianceMap(k)
            if psf is None:
                psf = FourierUtils.airyPSF(im.shape)
            img = FourierUtils.varmapToImage(im,psf)
            tab['C%d'%k] = img[mnMap,mnMap:2*mnMap]
        tab.write(self.path('CProfAll.txt'),format='ascii.commented_header',overwrite=True)
        if self.verbose:
            print('#PSF-convolved profiles')
            tab.pprint(max_lines=-1,max_width=-1)
        return tab

    #%% ERROR BUDGET
    def units(self):
        if self.config.wfeUnits == 'nm':
            return self.aosys.lam_sci/(2*np.pi)/1e-9
        return 1.0

    def ErrorBudget(self):
        """ One row per star magnitude: optimal spacing, every error term as a
        wavefront error in wfeUnits, and the Strehl"""
        units = self.units()
        aosys = copy.deepcopy(self.aosys)
        rows  = []
        for mag in self.config.mags:
            budget = aosys.errorBudget(mag)
            row = [mag,budget['d_opt']]
            row += [np.sqrt(budget[key])*units for key in BUDGET_COLUMNS[2:-1]]
            row.append(budget['strehl'])
            rows.append(row)
        tab = Table(rows=rows,names=BUDGET_COLUMNS)
        tab.meta['comments'] = ['wfeUnits = %s'%self.config.wfeUnits]
        tab.write(self.path('errorBudget.txt'),format='ascii.commented_header',overwrite=True)
        if self.verbose:
            tab.pprint(max_lines=-1,max_width=-1)
        return tab

    def Strehl(self):
        strehl = self.aosys.strehl()
        if self.verbose:
            print(strehl)
        return strehl

    #%% TEMPORAL
    def temporalPSD(self):
        """ Single mode temporal analysis, written to temporalPSD_<m>_<n>.txt"""
        cfg = self.config
        engine = fourierTemporalPSD(self.aosys,fftenv=self.fftenv,verbose=self.verbose)
        tab = engine.temporalPSD(cfg.k_m,cfg.k_n,cfg.dfreq,cfg.fmax,cfg.lpNc)
        meta = dict(tab.meta)
        tab.meta['comments'] = ['%s = %s'%(key,val) for key,val in meta.items()]
        tab.write(self.path('temporalPSD_%d_%d.txt'%(cfg.k_m,cfg.k_n)),
                  format='ascii.commented_header',overwrite=True)
        return tab

    def _grid(self):
        cfg = self.config
        return psdGrid(self.aosys,nJobs=cfg.nJobs,seed=cfg.seed,fftenv=self.fftenv,verbose=self.verbose)

    def temporalPSDGrid(self):
        cfg = self.config
        if not self.aosys.minTauWFS > 0:
            raise ConfigurationError('temporalPSDGrid: minTauWFS must be > 0 to set the loop frequency')
        return self._grid().makePSDGrid(cfg.gridDir,self.aosys.fit_mn_max,cfg.dfreq,
                                        1/self.aosys.minTauWFS,cfg.fmax)

    def temporalPSDGridAnalyze(self):
        cfg = self.config
        if not self.aosys.d_min > 0:
            raise ConfigurationError('temporalPSDGridAnalyze: d_min must be > 0')
        mnCon = self.aosys.D/self.aosys.d_min/2
        return self._grid().analyzePSDGrid(cfg.subDir,cfg.gridDir,self.aosys.fit_mn_max,mnCon,
                                           cfg.lpNc,cfg.mags,cfg.lifetimeTrials,
                                           cfg.uncontrolledLifetimes,cfg.writePSDs)
