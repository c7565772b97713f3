import unittest

from o2tasks.histograms import AxisSpec, HistogramRegistry


class TestAxisSpec(unittest.TestCase):
    def test_variable_axis_derives_range(self) -> None:
        axis = AxisSpec.from_edges([0.1, 0.5, 2.0], "pt")
        self.assertTrue(axis.variable)
        self.assertEqual((axis.nbins, axis.lo, axis.hi), (2, 0.1, 2.0))

    def test_invalid_axes(self) -> None:
        with self.assertRaisesRegex(ValueError, "increasing"):
            AxisSpec.from_edges([1.0, 1.0])
        with self.assertRaisesRegex(ValueError, "nbins > 0"):
            AxisSpec(10, 1.0, 0.0, "x")


class TestHistogramRegistry(unittest.TestCase):
    def test_booking_keeps_order_and_paths(self) -> None:
        reg = HistogramRegistry("Histos")
        reg.add("MC/ptA", "pt", "TH1D", [AxisSpec(10, 0.0, 1.0, "x")])
        spec = reg.add("hB", "b", "TH2F", [AxisSpec(1, 0, 1, "x"), AxisSpec(1, 0, 1, "y")])
        self.assertEqual(reg.names(), ["MC/ptA", "hB"])
        self.assertEqual(len(reg), 2)
        self.assertIn("MC/ptA", reg)
        self.assertEqual(reg.get("MC/ptA").directory, "MC")
        self.assertEqual(reg.get("MC/ptA").basename, "ptA")
        self.assertEqual(spec.directory, "")
        self.assertEqual(spec.full_title(), "b;x;y")

    def test_booking_errors(self) -> None:
        reg = HistogramRegistry("r")
        reg.add("h", "h", "TH1F", [AxisSpec(1, 0, 1)])
        with self.assertRaisesRegex(ValueError, "already booked"):
            reg.add("h", "h", "TH1F", [AxisSpec(1, 0, 1)])
        with self.assertRaisesRegex(ValueError, "needs 2 axes"):
            reg.add("h2", "h", "TH2F", [AxisSpec(1, 0, 1)])
        with self.assertRaisesRegex(ValueError, "Unsupported histogram kind"):
            reg.add("h3", "h", "TProfile", [AxisSpec(1, 0, 1)])
        with self.assertRaisesRegex(ValueError, "Invalid histogram path"):
            reg.add("a/b/c", "h", "TH1F", [AxisSpec(1, 0, 1)])
        with self.assertRaisesRegex(KeyError, "not booked"):
            reg.get("missing")

    def test_sparse_accepts_any_dimension(self) -> None:
        reg = HistogramRegistry("r")
        spec = reg.add("thn", "t", "THnSparseF", [AxisSpec(2, 0, 1)] * 7)
        self.assertEqual(spec.ndim, 7)


if __name__ == "__main__":
    unittest.main()
