import numpy as np
import pandas as pd

# August-Roche-Magnus coefficients
MAGNUS_B = 17.625
MAGNUS_C = 243.04


def _as_float(values):
    """Converts a scalar, array or Series to float64 with None and pd.NA as NaN."""
    if isinstance(values, pd.Series):
        return pd.to_numeric(values).astype(np.float64)
    if values is None or values is pd.NA:
        return np.nan
    if np.ndim(values) == 0:
        return float(values)
    flat = pd.Series(np.ravel(np.asarray(values, dtype=object)))
    return pd.to_numeric(flat).astype(np.float64).to_numpy().reshape(np.shape(values))


def relative_humidity(temp, dew_point):
    """
    Relative humidity (%) from air temperature and dew point (both in deg C).

    Works on scalars, numpy arrays and pandas Series. The result is rounded to
    one decimal place and is null wherever either input is null.
    """
    temp = _as_float(temp)
    dew_point = _as_float(dew_point)
    rh = 100 * (
        np.exp((MAGNUS_B * dew_point) / (MAGNUS_C + dew_point))
        / np.exp((MAGNUS_B * temp) / (MAGNUS_C + temp))
    )
    return np.round(rh, 1)


def add_relative_humidity(df: pd.DataFrame) -> pd.DataFrame:
    """Returns a copy of ``df`` with an ``rh`` column computed from ``temp`` and ``dew_point``."""
    out = df.copy()
    out['rh'] = relative_humidity(out['temp'], out['dew_point'])
    return out
