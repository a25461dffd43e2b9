"""Recovery of KubeVirt virtual machines from Kasten K10 restore points."""

__version__ = "1.0.0"
