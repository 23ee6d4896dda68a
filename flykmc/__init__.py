"""Building blocks for off-lattice kinetic Monte Carlo: splines, EAM tables, neighbour
lists, local-environment catalogues, L-BFGS minimisation, dimer rotation and vacancy
detection."""

__version__ = "0.1.0"