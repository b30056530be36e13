"""
Portfolio Analysis Engine

Pure calculations over fund contributions, price series and classification data:
- Performance (invested, value, absolute return, CAGR, IRR)
- Diversification (asset, category, sector and market-cap weights)
- Concentration risk findings
"""

__version__ = "1.0.0"
