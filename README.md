# flykmc

Building blocks for off-lattice, self-learning kinetic Monte Carlo simulations
of atomic systems, written in Python with NumPy.

## What is inside

- `flykmc.spline`: `Spline`, a natural cubic spline over evenly spaced samples.
  It gives the value (`f`), first derivative (`fp`) and second derivative (`fpp`).
- `flykmc.eam_data`: `DataEAM` reads multi-density tabulated EAM files, either
  with `DataEAM.from_stream` (any iterable of lines) or `DataEAM.from_file`.
  It gives access to species masses, embedding functions `f`, densities `phi`
  and symmetric pair potentials `v`, each as a `Spline`. Malformed tables raise
  `EAMFormatError`.
- `flykmc.neighbours`: `Box` is a periodic or partly periodic cell, with
  `canon_image` and `min_image`. `NeighbourList` builds ghost images near
  periodic faces. It returns `(index, distance, displacement)` per neighbour
  through `neighbours`, and moves atoms in place with `update`.
- `flykmc.geometry`: `Geometry` is a local environment made of positions,
  colours and source atom indices. The module also has `centroid`, `rmsd`,
  `grmsd` and `ortho_onto` (a Kabsch fit with reflections allowed), and
  `to_colour`. `for_equiv_perms` searches for permutations of one geometry
  that match another within a tolerance. `Geometry.permute_onto` takes the
  first match and `Geometry.best_perm_onto` takes the one with the smallest rmsd.
- `flykmc.heuristics`: `Fingerprint` holds sorted intra-atomic distances and is
  used as a fast pre-check. `colour_offsets` and `canon_hash` reorder a
  geometry into a canonical order and return a hash of its colours and bond
  graph.
- `flykmc.mechanisms`: `Mechanism` holds the energies and the per-atom
  displacements to the saddle point and to the final minimum.
- `flykmc.envs`: `CatalogueOptions`, `Env` (a stored reference environment) and
  `SelfSymmetry`. `geometry_from_neighbours` builds the environment of one atom.
- `flykmc.catalogue`: `Catalogue` matches every atom's environment against
  stored references. It uses a hash, then a fingerprint, then a full
  permutation search. It inserts new environments, attaches mechanisms
  (`set_mechs`), finds self-symmetries (`calc_self_syms`), tightens tolerances
  (`refine_tol`) and applies a mechanism to a configuration (`reconstruct`). It
  can be saved with `dump` and read back with `Catalogue.load`.
- `flykmc.lbfgs_core` and `flykmc.lbfgs`: `StepLBFGS` is the two-loop
  quasi-Newton step. `LBFGS` is a trust-radius minimiser that returns a
  `MinimiseResult`.
- `flykmc.rotor`: `Rotor` turns a dimer axis towards the lowest-curvature mode.
  It returns the effective gradient, the new axis and the curvature.
- `flykmc.perturb`: `gen_images` and `perturb` apply random local displacements
  and draw a random axis. These are used to start saddle-point searches.
- `flykmc.lattice`: `centroid_align`, and `DetectVacancies`, which finds empty
  sites by comparing against a perfect single-species lattice.

## Potentials

`LBFGS.minimise` and `Rotor.eff_gradient` work with any potential object that
provides two methods:

- `r_cut()`, the interaction cut-off.
- `gradient(types, frozen, nl)`, which returns an `(N, 3)` array of energy
  gradients at the current positions held by the `NeighbourList` `nl`
  (`nl.positions`).

## What this package does not do

The package reads EAM tables, but it has no EAM energy, force or Hessian
evaluator. You supply the potential object yourself. It has a dimer rotation
step, but no complete saddle-point search loop. It has no rate tables, no KMC
event selection and no superbasin handling. There is no command-line program.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
from flykmc.spline import Spline

s = Spline([0.0, 1.0, 4.0, 9.0, 16.0], dx=1.0)
print(s.f(2.5), s.fp(2.5), s.fpp(2.5))
```

```python
import numpy as np
from flykmc.neighbours import Box, NeighbourList

box = Box(np.diag([10.0, 10.0, 10.0]), [True, True, True])
nl = NeighbourList(box, r_cut=3.0)
nl.rebuild(np.array([[0.5, 0.5, 0.5], [9.5, 0.5, 0.5]]))
for n, r, dr in nl.neighbours(0, 3.0):
    print(n, r, dr)
```

```python
import numpy as np
from flykmc.geometry import Geometry

ref = Geometry([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [0, 0, 0])
mut = Geometry([[0, 0, 0], [0, 1, 0], [1, 0, 0]], [0, 0, 0])
info = mut.permute_onto(ref, delta=0.1)
print(info.rmsd, mut.positions)
```