"""Session liquidity sweep entry strategy.

Arms after an Asia/London level is swept in the direction the EMA bias
supports, then waits for a one-minute confirmation candle.
"""

from strategies.session_sweep.strategy import SessionSweepStrategy

__all__ = ["SessionSweepStrategy"]
