from metagrowth.results.fit_result import MetaModelFitResult

__all__ = ["MetaModelFitResult"]
