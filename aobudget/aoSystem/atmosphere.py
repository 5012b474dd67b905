#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Layered turbulence profile: Cn2, wind and altitude per layer, r0 and L0.
"""

import math
import numpy as np
import scipy.special as spc

from aobudget.aoSystem import ConfigurationError

#%%
LAM_0_DEFAULT = 0.5e-6

class layer:
    def __init__(self,Cn2,height,wSpeed,wDir):
        self.Cn2    = Cn2
        self.height = height
        self.wSpeed = wSpeed
        self.wDir   = wDir

class atmosphere:
    """ Atmosphere class that wraps up the turbulence profile.
    Inputs are:
        - lam_0: reference wavelength for r0, in meter
        - r0: Fried parameter at lam_0 in meter
        - Cn2: layer turbulence strength, relative (rescaled to r0)
        - heights: layer altitudes in meter
        - wSpeed: wind speed values in m/s
        - wDir: wind direction in radian
        - L0: outer scale in meter, <=0 or inf for Kolmogorov turbulence
        - h_obs: altitude of the observatory in meter
        - H: atmospheric scale height in meter

    Layer Cn2 values are stored in absolute units (m^1/3) so that r0 and the
    Cn2 vector are always consistent at lam_0.
    """

    # DEPENDANT VARIABLES DEFINITION
    @property
    def nL(self):
        return len(self.Cn2)

    @property
    def weights(self):
        """Fractional Cn2 weights, sum to 1"""
        return self.Cn2/np.sum(self.Cn2)

    @property
    def r0(self):
        """r0 value in meter at self.lam_0, computed from the layer Cn2"""
        k = 2*np.pi/self.lam_0
        return (0.423*k**2*np.sum(self.Cn2))**(-3/5)

    @property
    def L0(self):
        return self.p_L0

    @L0.setter
    def L0(self,val):
        if val is None or val <= 0:
            val = math.inf
        self.p_L0 = val

    @property
    def layer_Cn2(self):
        return self.Cn2.copy()

    @property
    def layer_v_wind(self):
        return self.wSpeed.copy()

    @property
    def layer_dir(self):
        return self.wDir.copy()

    @property
    def layer_z(self):
        return self.heights.copy()

    @property
    def layer(self):
        return [layer(self.Cn2[l],self.heights[l],self.wSpeed[l],self.wDir[l])
                for l in range(self.nL)]

    @property
    def seeing(self):
        """Seeing value in arcsec at self.lam_0"""
        return 3600*180/np.pi*0.98*self.lam_0/self.r0

    @property
    def theta0(self):
        """ Isoplanatic angle in arcsec at self.lam_0"""
        if not any(self.heights):
            return math.inf
        cst = (24*spc.gamma(6/5)/5)**(-5/6)*self.r0**(5/3)
        th0 = ( cst/sum(self.weights*self.heights**(5/3) ) )**(3/5)
        return th0*3600*180/np.pi

    @property
    def z_mean(self):
        """ Mean-weighted height in meter"""
        return sum( self.weights*self.heights**(5/3) )**(3/5)

    @property
    def v_wind(self):
        """ Mean-weighted wind speed in m/s"""
        return sum( self.weights*self.wSpeed**(5/3) )**(3/5)

    @property
    def tau0(self):
        """Coherence time in ms at self.lam_0"""
        if self.v_wind == 0:
            return math.inf
        return 0.314 * 1000 * self.r0/self.v_wind

    def __init__(self,lam_0,r0,Cn2,heights,wSpeed=0.0,wDir=0.0,L0=math.inf,
                 h_obs=0.0,H=8000.0,verbose=False):

        # PARSING INPUTS
        if lam_0 is None or lam_0 <= 0:
            lam_0 = LAM_0_DEFAULT
        self.lam_0   = lam_0
        self.Cn2     = np.array(Cn2,dtype=float).ravel()
        self.heights = np.array(heights,dtype=float).ravel()
        self.h_obs   = h_obs
        self.H       = H
        self.verbose = verbose
        self.L0      = L0

        if self.nL == 0:
            raise ConfigurationError('The atmosphere needs at least one layer')
        if np.any(self.Cn2 < 0) or np.sum(self.Cn2) <= 0:
            raise ConfigurationError('Layer Cn2 values must be >= 0 with a positive sum')
        if np.isscalar(wSpeed):
            wSpeed  = wSpeed*np.ones(self.nL)
        if np.isscalar(wDir):
            wDir    = wDir*np.ones(self.nL)
        self.wSpeed = np.array(wSpeed,dtype=float).ravel()
        self.wDir   = np.array(wDir,dtype=float).ravel()
        self._checkLength(self.heights,'heights')
        self._checkLength(self.wSpeed,'wSpeed')
        self._checkLength(self.wDir,'wDir')

        # the Cn2 input is relative: rescale it to r0
        self.set_r0(r0,lam_0)

    def _checkLength(self,values,name):
        if len(values) != self.nL:
            raise ConfigurationError("'{}' has {} values but the atmosphere has {} layers"
                                     .format(name,len(values),self.nL))

    #%% SETTERS
    def set_r0(self,r0,lam_0=None):
        """ Set r0 at lam_0 by rescaling every layer Cn2 by the same factor.
        lam_0 <= 0 or None selects the default 0.5 micron.
        """
        if r0 is None or not r0 > 0:
            raise ConfigurationError('r0 must be > 0, got {}'.format(r0))
        if lam_0 is None or lam_0 <= 0:
            lam_0 = LAM_0_DEFAULT
        self.lam_0 = lam_0
        k = 2*np.pi/lam_0
        totalCn2 = r0**(-5/3)/(0.423*k**2)
        self.Cn2 = totalCn2*self.weights

    def set_layer_Cn2(self,Cn2,lam_0=None):
        """ Set the layer Cn2 values.
        With lam_0 > 0 the values are absolute and r0 is recomputed from them,
        otherwise they are relative weights and the current r0 is kept.
        """
        Cn2 = np.array(Cn2,dtype=float).ravel()
        self._checkLength(Cn2,'layer_Cn2')
        if np.any(Cn2 < 0) or np.sum(Cn2) <= 0:
            raise ConfigurationError('Layer Cn2 values must be >= 0 with a positive sum')
        if lam_0 is None or lam_0 <= 0:
            r0 = self.r0
            self.Cn2 = Cn2
            self.set_r0(r0,self.lam_0)
        else:
            self.lam_0 = lam_0
            self.Cn2 = Cn2

    def set_layer_v_wind(self,wSpeed):
        wSpeed = np.array(wSpeed,dtype=float).ravel()
        self._checkLength(wSpeed,'layer_v_wind')
        if np.any(wSpeed < 0):
            raise ConfigurationError('Layer wind speeds must be >= 0')
        self.wSpeed = wSpeed

    def set_layer_dir(self,wDir):
        wDir = np.array(wDir,dtype=float).ravel()
        self._checkLength(wDir,'layer_dir')
        self.wDir = wDir

    def set_layer_z(self,heights):
        heights = np.array(heights,dtype=float).ravel()
        self._checkLength(heights,'layer_z')
        self.heights = heights

    def rescale_wind_moment(self,v_wind):
        """ Rescale every layer wind speed so that the 5/3 moment equals v_wind."""
        current = self.v_wind
        if v_wind < 0:
            raise ConfigurationError('v_wind must be >= 0')
        if current == 0:
            if v_wind == 0:
                return
            raise ConfigurationError('Cannot rescale wind speeds: all layers have zero wind')
        self.wSpeed = self.wSpeed*v_wind/current

    def rescale_altitude_moment(self,z_mean):
        """ Rescale every layer altitude so that the 5/3 moment equals z_mean."""
        current = self.z_mean
        if z_mean < 0:
            raise ConfigurationError('z_mean must be >= 0')
        if current == 0:
            if z_mean == 0:
                return
            raise ConfigurationError('Cannot rescale altitudes: all layers are at the ground')
        self.heights = self.heights*z_mean/current

    #%% STATISTICS
    def r0_at(self,wvl):
        """r0 in meter at wavelength wvl"""
        return self.r0*(wvl/self.lam_0)**1.2

    def spectrum(self,k,wvl=None):
        """SPECTRUM Phase power spectrum density in rad^2 m^2 at wvl (default lam_0)
            from the spatial frequency k in cycles/m
        """
        if wvl is None:
            wvl = self.lam_0
        cte = (24*spc.gamma(6/5)/5)**(5/6)*(spc.gamma(11/6)**2./(2.*np.pi**(11/3)))
        return self.r0_at(wvl)**(-5/3)*cte*(k**2 + 1/self.L0**2)**(-11/6)

    def setupDict(self):
        return {'lam_0': self.lam_0, 'r_0': self.r0, 'L_0': self.L0,
                'layer_Cn2': self.Cn2.tolist(), 'layer_v_wind': self.wSpeed.tolist(),
                'layer_dir': self.wDir.tolist(), 'layer_z': self.heights.tolist(),
                'h_obs': self.h_obs, 'H': self.H,
                'v_wind': self.v_wind, 'z_mean': self.z_mean}

    def __repr__(self):
        """DISPLAY Display object information
           atm.display prints information about the atmosphere object
        """
        s = ('___ ATMOSPHERE ___\n')
        if np.isinf(self.L0):
            s += " Kolmogorov-Tatarski atmospheric turbulence :\n"
            s+= ".wavelength\t= %5.2fmicron,\n.r0 \t\t= %5.2fcm,\n.seeing \t= %5.2farcsec,"%(self.lam_0*1e6,self.r0*1e2,self.seeing)
        else:
            s += (' Von Kármán atmospheric turbulence\n')
            s+= '.wavelength\t= %5.2fmicron,\n.r0 \t\t= %5.2fcm,\n.L0 \t\t= %5.2fm,\n.seeing \t= %.2farcsec'%(self.lam_0*1e6,self.r0*1e2,self.L0,self.seeing)

        s+=('\n.h_mean \t= %5.2f m'%self.z_mean)
        if not np.isinf(self.theta0):
            s+=('\n.theta0 \t= %5.2farcsec'%self.theta0)
        s+=('\n.v_mean \t= %5.2f m/s'%self.v_wind)
        if not np.isinf(self.tau0):
            s+=('\n.tau0 \t\t= %5.2fms'%self.tau0)
        s+=('\n.h_obs \t\t= %5.1f m\n.H \t\t= %5.1f m'%(self.h_obs,self.H))

        s+=('\n------------------------------------------------------\n')
        s+=(' Layer\t Height [m]\t Cn2 [m^1/3]\t Weight\t wind([m/s] [rad])\n')
        for l in np.arange(0,self.nL):
            s = s + '%2d\t %8.2f\t %8.3e\t  %4.2f\t (%5.2f %6.2f)\n'%(l,
                self.heights[l],
                self.Cn2[l],
                self.weights[l],
                self.wSpeed[l],
                self.wDir[l])

        s+=('------------------------------------------------------\n')
        return s
