import math


class LatticeFilterConfig:
    """ Lattice filter """
    def __init__(self, reverse: bool=False, bilateral: bool=True, theta_alpha: float=1.0, theta_beta: float=1.0, theta_gamma: float=1.0) -> None:
        # - Blur order and kind of features
        self.reverse = bool(reverse)
        self.bilateral = bool(bilateral)

        # - Bandwidths, spatial and color for bilateral features, spatial only otherwise
        self.theta_alpha, self.theta_beta = float(theta_alpha), float(theta_beta)
        self.theta_gamma = float(theta_gamma)

        for name in ("theta_alpha", "theta_beta", "theta_gamma"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError("{} must be a positive finite number, got {}.".format(name, value))

    @property
    def spatial_std(self) -> float:
        return self.theta_alpha if self.bilateral else self.theta_gamma

    @property
    def features_std(self):
        return self.theta_beta if self.bilateral else None

    def as_dict(self) -> dict:
        return {
            "reverse": self.reverse,
            "bilateral": self.bilateral,
            "theta_alpha": self.theta_alpha,
            "theta_beta": self.theta_beta,
            "theta_gamma": self.theta_gamma,
        }

    def describe(self) -> str:
        if self.bilateral:
            kind = "bilateral(theta_alpha={}, theta_beta={})".format(self.theta_alpha, self.theta_beta)
        else:
            kind = "spatial(theta_gamma={})".format(self.theta_gamma)
        return "{}, {} blur".format(kind, "reverse" if self.reverse else "forward")

    def __repr__(self) -> str:
        return "LatticeFilterConfig({})".format(", ".join("{}={!r}".format(k, v) for k, v in self.as_dict().items()))
