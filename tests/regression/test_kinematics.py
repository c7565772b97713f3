import math
import unittest

from o2tasks import kinematics as k


class TestKinematics(unittest.TestCase):
    def test_rapidity_tends_to_eta_for_light_particles(self) -> None:
        self.assertAlmostEqual(k.rapidity(10.0, 0.3, 1e-6), 0.3, places=6)
        self.assertAlmostEqual(k.rapidity(1.0, 0.0, k.MASS_DEUTERON), 0.0)
        self.assertLess(abs(k.rapidity(1.0, 0.5, k.MASS_HELIUM3)), 0.5)

    def test_rapidity_is_odd_in_eta(self) -> None:
        self.assertAlmostEqual(k.rapidity(1.2, -0.4, k.MASS_PROTON), -k.rapidity(1.2, 0.4, k.MASS_PROTON))

    def test_eta_from_tgl(self) -> None:
        self.assertAlmostEqual(k.eta_from_tgl(0.0), 0.0)
        self.assertAlmostEqual(k.eta_from_tgl(math.sinh(0.7)), 0.7)

    def test_phi_is_wrapped_to_two_pi(self) -> None:
        self.assertAlmostEqual(k.phi_from_track(0.0, -0.5), 2.0 * math.pi - 0.5)
        self.assertAlmostEqual(k.phi_from_track(math.sin(0.2), 1.0), 1.2)

    def test_wrap_delta_phi(self) -> None:
        self.assertAlmostEqual(k.wrap_delta_phi(4.0), 4.0 - 2.0 * math.pi)
        self.assertAlmostEqual(k.wrap_delta_phi(-4.0), 2.0 * math.pi - 4.0)
        self.assertEqual(k.wrap_delta_phi(1.0), 1.0)

    def test_pt_at_tpc_inner_wall(self) -> None:
        self.assertAlmostEqual(k.pt_at_tpc_inner_wall(2.0, 0.0), 2.0)
        self.assertAlmostEqual(k.pt_at_tpc_inner_wall(2.0, 1.0), 2.0 / math.sqrt(2.0))


if __name__ == "__main__":
    unittest.main()
