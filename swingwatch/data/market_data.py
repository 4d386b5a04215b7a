"""
Market Data Provider: yfinance

Daily OHLCV candles for equities / ETFs by ticker and date range.
Free, no auth required.

Contract: a normalised candle frame (see snapshot.to_frame), ascending,
unique dates. Two distinct outcomes when there is nothing to analyse:

  • the fetch itself failed (network, unknown symbol, yfinance error)
        → NoMarketData is raised
  • the fetch worked but the range holds no bars (holiday week, future dates)
        → an empty frame is returned
"""
import logging
import os
from datetime import date, timedelta
from typing import Dict, Iterable, Optional, Union

import pandas as pd
from dotenv import load_dotenv

from ..strategy.snapshot import CANDLE_COLUMNS, to_frame

logger = logging.getLogger(__name__)

load_dotenv()

DateLike = Union[str, date, pd.Timestamp]


class NoMarketData(LookupError):
    """The provider could not supply data for the request."""


class MarketData:
    """
    Daily candles via yfinance.

    Usage:
        md = MarketData()
        df = md.get_daily_candles("AAPL", "2024-01-01", "2024-06-30")
    """

    def __init__(self, auto_adjust: Optional[bool] = None):
        import yfinance
        self._yf = yfinance
        if auto_adjust is None:
            auto_adjust = os.getenv("SWINGWATCH_AUTO_ADJUST", "true").lower() not in ("false", "0", "no")
        self.auto_adjust = auto_adjust

    def get_daily_candles(
        self,
        ticker: str,
        start: DateLike,
        end: Optional[DateLike] = None,
    ) -> pd.DataFrame:
        """
        Fetch daily candles for [start, end] (both inclusive).

        end defaults to today.
        """
        start_ts = pd.Timestamp(start)
        end_ts = pd.Timestamp(end) if end is not None else pd.Timestamp(date.today())
        if start_ts > end_ts:
            raise ValueError(f"start {start_ts.date()} is after end {end_ts.date()}")

        logger.info(f"Fetching {ticker} daily {start_ts.date()} → {end_ts.date()}")
        try:
            df = self._yf.Ticker(ticker).history(
                start=start_ts.strftime("%Y-%m-%d"),
                # yfinance treats `end` as exclusive
                end=(end_ts + timedelta(days=1)).strftime("%Y-%m-%d"),
                interval="1d",
                auto_adjust=self.auto_adjust,
            )
        except Exception as e:
            logger.error(f"Error fetching {ticker}: {e}")
            raise NoMarketData(f"{ticker}: {e}") from e

        if df is None:
            logger.error(f"No response for {ticker}")
            raise NoMarketData(f"{ticker}: provider returned nothing")

        if df.empty:
            logger.warning(f"No bars for {ticker} between {start_ts.date()} and {end_ts.date()}")
            return to_frame(pd.DataFrame(columns=CANDLE_COLUMNS))

        df.columns = [str(c).lower() for c in df.columns]
        missing = [c for c in CANDLE_COLUMNS if c not in df.columns]
        if missing:
            logger.error(f"{ticker}: response missing columns {missing}")
            raise NoMarketData(f"{ticker}: response missing columns {missing}")

        df = df[CANDLE_COLUMNS].dropna(subset=["open", "high", "low", "close"]).copy()
        df["volume"] = df["volume"].fillna(0)
        return to_frame(df)

    def get_many(
        self,
        tickers: Iterable[str],
        start: DateLike,
        end: Optional[DateLike] = None,
    ) -> Dict[str, pd.DataFrame]:
        """
        Fetch several tickers. Tickers that fail are logged and skipped,
        tickers with an empty range are kept (empty frame).
        """
        result = {}
        for ticker in tickers:
            try:
                result[ticker] = self.get_daily_candles(ticker, start, end)
            except NoMarketData as e:
                logger.warning(f"Skipping {ticker}: {e}")
        return result
