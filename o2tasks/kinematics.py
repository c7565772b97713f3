import math

# PDG masses (GeV/c^2) as used by the O2 physics constants.
MASS_PROTON = 0.938272088
MASS_DEUTERON = 1.87561294257
MASS_TRITON = 2.80892113298
MASS_HELIUM3 = 2.80839160743
MASS_ALPHA = 3.7273794066

N_ITS_LAYERS = 7
TWO_PI = 2.0 * math.pi


def rapidity(pt: float, eta: float, mass: float) -> float:
    mt = math.hypot(pt, mass)
    return math.asinh(pt / mt * math.sinh(eta))


def eta_from_tgl(tgl: float) -> float:
    return -math.log(math.tan(0.25 * math.pi - 0.5 * math.atan(tgl)))


def phi_from_track(snp: float, alpha: float) -> float:
    """Azimuth of a track parametrised in the local (snp, alpha) frame, in [0, 2pi)."""
    phi = math.asin(snp) + alpha
    return phi % TWO_PI


def wrap_delta_phi(delta: float) -> float:
    if delta > math.pi:
        delta -= TWO_PI
    if delta < -math.pi:
        delta += TWO_PI
    return delta


def pt_at_tpc_inner_wall(tpc_inner_param: float, tgl: float) -> float:
    # tgl is still the value from global tracking, not at the TPC inner wall.
    return tpc_inner_param / math.sqrt(1.0 + tgl * tgl)


def its_layers(cluster_map: int) -> list[int]:
    return [layer for layer in range(N_ITS_LAYERS) if cluster_map & (1 << layer)]


def its_ncls(cluster_map: int) -> int:
    return len(its_layers(cluster_map))


def layers_from_hitmap(hitmap: int) -> set[int]:
    return {layer for layer in range(N_ITS_LAYERS) if hitmap & (1 << layer)}


def hits_in_layers(cluster_map: int, layers: set[int]) -> int:
    return sum(1 for layer in layers if cluster_map & (1 << layer))
