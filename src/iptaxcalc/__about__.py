__title__ = "IpTaxCalc"
__version__ = "0.3.0"
