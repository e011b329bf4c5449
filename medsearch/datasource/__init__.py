from medsearch.datasource.rxnorm import RxNormSource

__all__ = ["RxNormSource"]
