"""Tabulated embedded-atom-method potential data."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator, Sequence, Union

from flykmc.spline import Spline

_CHUNK = 5


class EAMFormatError(ValueError):
    """Raised when an EAM table cannot be parsed."""


class _Reader:
    def __init__(self, stream: Iterable[str]) -> None:
        self._lines: Iterator[str] = iter(stream)

    def tokens(self) -> list[str]:
        try:
            return next(self._lines).split()
        except StopIteration:
            raise EAMFormatError("File terminated too soon") from None

    def chunked(self, n: int, k: int = _CHUNK) -> list[float]:
        values: list[float] = []
        while len(values) < n:
            tokens = self.tokens()
            take = min(k, n - len(values))
            if len(tokens) < take:
                raise EAMFormatError(f"Expected {take} values on a line, found {len(tokens)}")
            try:
                values.extend(float(t) for t in tokens[:take])
            except ValueError as exc:
                raise EAMFormatError(f"Bad number in table: {exc}") from None
        return values


def _parse(kind: type, token: str, what: str):
    try:
        return kind(token)
    except ValueError:
        raise EAMFormatError(f"Could not parse {what} from {token!r}") from None


def _sym_index(i: int, j: int) -> int:
    hi, lo = max(i, j), min(i, j)
    return hi * (hi + 1) // 2 + lo


class DataEAM:
    """Embedding functions, densities and pair potentials for each species.

    ``phi[i][j]`` is the density that an atom of type ``i`` contributes at an
    atom of type ``j``; ``v`` holds the pair potentials as lower-triangular
    rows, ``v[i][j]`` for ``j <= i``.
    """

    def __init__(
        self,
        names: Sequence[str],
        masses: Sequence[float],
        r_cut: float,
        f: Sequence[Spline],
        phi: Sequence[Sequence[Spline]],
        v: Sequence[Sequence[Spline]],
    ) -> None:
        n = len(names)
        if n == 0:
            raise ValueError("An EAM potential needs at least one species")
        if len(masses) != n or len(f) != n:
            raise ValueError("Number of masses and embedding functions must match the number of species")
        if len(phi) != n or any(len(row) != n for row in phi):
            raise ValueError(f"Densities must form a {n}x{n} table")
        if len(v) != n or any(len(row) != i + 1 for i, row in enumerate(v)):
            raise ValueError("Pair potentials must form a lower-triangular table")

        self.names = list(names)
        self.r_cut = float(r_cut)
        self._masses = [float(m) for m in masses]
        self._f = list(f)
        self._phi = [list(row) for row in phi]
        self._v = [spline for row in v for spline in row]

    @classmethod
    def from_stream(cls, stream: Iterable[str], debug: bool = False) -> "DataEAM":
        """Parse a multi-density tabulated EAM file from an iterable of lines."""
        reader = _Reader(stream)

        for _ in range(3):
            reader.tokens()

        header = reader.tokens()
        if not header:
            raise EAMFormatError("Missing number of species")
        n = _parse(int, header[0], "number of species")
        if n < 1:
            raise EAMFormatError(f"Invalid number of species {n}")
        names = header[1 : 1 + n]
        if len(names) != n:
            raise EAMFormatError(f"Expected {n} species names, found {len(names)}")

        tab = reader.tokens()
        if len(tab) < 5:
            raise EAMFormatError("Tabulation line needs numP, delP, numR, delR and cut-off")
        num_p = _parse(int, tab[0], "numP")
        del_p = _parse(float, tab[1], "delP")
        num_r = _parse(int, tab[2], "numR")
        del_r = _parse(float, tab[3], "delR")
        r_cut = _parse(float, tab[4], "cut-off")

        if num_p < 1:
            raise EAMFormatError("no elements!")
        if num_r < 2:
            raise EAMFormatError(f"Pair tables need at least two points, found {num_r}")

        if debug:
            print(f"EAM: NumP={num_p}, NumR={num_r}")

        masses: list[float] = []
        f: list[Spline] = []
        phi: list[list[Spline]] = []

        for i in range(n):
            species = reader.tokens()
            if len(species) < 2:
                raise EAMFormatError("Species line needs atomic number and mass")
            _parse(int, species[0], "atomic number")
            mass = _parse(float, species[1], "mass")
            masses.append(mass)
            if debug:
                print(f"Set mass of id={i} to {mass}")
                print(f"Read f_{i}")

            f.append(Spline(reader.chunked(num_p), del_p))

            row = []
            for j in range(n):
                if debug:
                    print(f"Read phi_{i},{j}")
                row.append(Spline(reader.chunked(num_r), del_r))
            phi.append(row)

        # Pair potentials are tabulated as r * v(r), lower triangle only.
        v: list[list[Spline]] = []
        for i in range(n):
            row = []
            for j in range(i + 1):
                if debug:
                    print(f"Read V_{i},{j}")
                raw = reader.chunked(num_r)
                values = [0.0] + [x / (del_r * k) for k, x in enumerate(raw) if k > 0]
                values[0] = values[1]
                row.append(Spline(values, del_r))
            v.append(row)

        return cls(names, masses, r_cut, f, phi, v)

    @classmethod
    def from_file(cls, path: Union[str, Path], debug: bool = False) -> "DataEAM":
        """Parse a tabulated EAM file from disk."""
        with open(path, encoding="utf-8") as stream:
            return cls.from_stream(stream, debug)

    def _check(self, type_id: int) -> int:
        if not 0 <= type_id < len(self.names):
            raise IndexError(f"Type id {type_id} out of range for {len(self.names)} species")
        return type_id

    def num_types(self) -> int:
        """Number of species."""
        return len(self.names)

    def mass(self, type_id: int) -> float:
        """Mass of species ``type_id``."""
        return self._masses[self._check(type_id)]

    def f(self, type_id: int) -> Spline:
        """Embedding function of species ``type_id``."""
        return self._f[self._check(type_id)]

    def phi(self, i: int, j: int) -> Spline:
        """Density contributed by a type ``i`` atom at a type ``j`` atom."""
        return self._phi[self._check(i)][self._check(j)]

    def v(self, i: int, j: int) -> Spline:
        """Symmetric pair potential between types ``i`` and ``j``."""
        return self._v[_sym_index(self._check(i), self._check(j))]