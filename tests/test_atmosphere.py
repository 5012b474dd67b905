#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for the atmosphere class
"""

import math
import unittest
import numpy as np

from aobudget.aoSystem import ConfigurationError
from aobudget.aoSystem.atmosphere import atmosphere

class TestAtmosphere(unittest.TestCase):
    """Test cases for the layered turbulence profile"""

    def setUp(self):
        self.atm = atmosphere(0.5e-6, 0.15, [0.5, 0.3, 0.2], [0., 5000., 10000.],
                              wSpeed=[10., 20., 30.], wDir=[0., 0.5, 1.0], L0=25.)

    def test_r0_from_relative_cn2(self):
        self.assertAlmostEqual(self.atm.r0, 0.15, places=12)
        np.testing.assert_allclose(self.atm.weights, [0.5, 0.3, 0.2])

    def test_r0_round_trip(self):
        """Setting r0, reading the Cn2 back and setting it again gives r0 back"""
        self.atm.set_r0(0.2, 0.5e-6)
        Cn2 = self.atm.layer_Cn2
        atm = atmosphere(0.5e-6, 0.1, [1., 1., 1.], [0., 5000., 10000.])
        atm.set_layer_Cn2(Cn2, 0.5e-6)
        self.assertAlmostEqual(atm.r0, 0.2, places=12)

    def test_relative_cn2_keeps_r0(self):
        self.atm.set_layer_Cn2([1., 1., 1.])
        self.assertAlmostEqual(self.atm.r0, 0.15, places=12)
        np.testing.assert_allclose(self.atm.weights, np.ones(3)/3)

    def test_r0_default_wavelength(self):
        self.atm.set_r0(0.1, 0)
        self.assertEqual(self.atm.lam_0, 0.5e-6)
        self.assertAlmostEqual(self.atm.r0, 0.1, places=12)

    def test_r0_wavelength_scaling(self):
        self.assertAlmostEqual(self.atm.r0_at(1e-6), 0.15*2**1.2, places=12)

    def test_wind_moment(self):
        ratios = self.atm.layer_v_wind/self.atm.layer_v_wind[0]
        for v in [0.5, 7., 42.]:
            self.atm.rescale_wind_moment(v)
            self.assertAlmostEqual(self.atm.v_wind, v, places=10)
            np.testing.assert_allclose(self.atm.layer_v_wind/self.atm.layer_v_wind[0], ratios)

    def test_altitude_moment(self):
        self.atm.rescale_altitude_moment(3000.)
        self.assertAlmostEqual(self.atm.z_mean, 3000., places=8)

    def test_degenerate_wind(self):
        atm = atmosphere(0.5e-6, 0.15, [1.], [0.], wSpeed=0.)
        with self.assertRaises(ConfigurationError):
            atm.rescale_wind_moment(10.)
        atm.rescale_wind_moment(0.)
        self.assertEqual(atm.v_wind, 0.)

    def test_length_mismatch(self):
        with self.assertRaises(ConfigurationError):
            self.atm.set_layer_v_wind([1., 2.])
        with self.assertRaises(ConfigurationError):
            self.atm.set_layer_dir([0.])
        with self.assertRaises(ConfigurationError):
            self.atm.set_layer_z([0., 1., 2., 3.])
        with self.assertRaises(ValueError):
            self.atm.set_layer_Cn2([1.])

    def test_invalid_r0(self):
        with self.assertRaises(ConfigurationError):
            self.atm.set_r0(-0.1)

    def test_outer_scale(self):
        self.atm.L0 = 0
        self.assertTrue(math.isinf(self.atm.L0))
        self.atm.L0 = None
        self.assertTrue(math.isinf(self.atm.L0))

    def test_spectrum(self):
        k = np.array([0.1, 1., 10.])
        psd = self.atm.spectrum(k)
        self.assertTrue(np.all(psd > 0))
        self.assertTrue(np.all(np.diff(psd) < 0))
        # Kolmogorov slope far from the outer scale
        self.atm.L0 = math.inf
        psd = self.atm.spectrum(k)
        self.assertAlmostEqual(psd[1]/psd[2], 10**(11/3), delta=1e-6*10**(11/3))

    def test_layers(self):
        layers = self.atm.layer
        self.assertEqual(len(layers), 3)
        self.assertEqual(layers[1].height, 5000.)
        self.assertEqual(layers[2].wSpeed, 30.)
        self.assertAlmostEqual(sum(l.Cn2 for l in layers), np.sum(self.atm.Cn2))

    def test_repr(self):
        self.assertIn('ATMOSPHERE', repr(self.atm))

if __name__ == '__main__':
    unittest.main()
