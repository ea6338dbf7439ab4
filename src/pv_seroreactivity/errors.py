from __future__ import annotations


class DataIntegrityError(RuntimeError):
    """Fatal data fault; the run is aborted before any output is written."""


class UndefinedCutoffError(DataIntegrityError):
    def __init__(self, antigen: str, n_non_missing: int) -> None:
        self.antigen = antigen
        self.n_non_missing = n_non_missing
        super().__init__(
            f"Cutoff undefined for antigen {antigen!r}: no non-negative log10 value "
            f"among {n_non_missing} non-missing measurements"
        )
