import os
from typing import TypeVar, Type, Optional

from dotenv import load_dotenv

load_dotenv()

T = TypeVar("T")


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value {value!r}")


def get_env_variable(name: str, type_: Type[T], default: Optional[T]) -> T:
    """Type-safe wrapper for `os.getenv`.

    Args:
        name (str): Name of the environment variable.
        type_ (Type[T]): Type of the environment variable.
        default (T): Default value if the environment variable is not set.

    Returns:
        T: Value of the environment variable.

    Usage:
        ```python
        from rewards.utils.env import get_env_variable

        # Get a string environment variable with a default value.
        get_env_variable("SUBGRAPH_URL", str, "http://localhost:8000")

        # Get an integer environment variable with a default value.
        get_env_variable("LOOKBACK_BLOCKS", int, 43200)
        ```
    """

    value = os.getenv(name, default)
    if value is None:
        return None
    try:
        if type_ is bool:
            return _parse_bool(value)
        return type_.__call__(value)
    except ValueError:
        raise ValueError(
            f"Environment variable '{name}' is not of type '{type_.__name__}'."
        )
    except TypeError:
        raise TypeError(
            f"Environment variable '{name}' is not set and has no default value."
        )


MAINNET_RPC = get_env_variable(
    name="MAINNET_RPC",
    type_=str,
    default="https://eth.llamarpc.com",
)
BASE_RPC = get_env_variable(
    name="BASE_RPC",
    type_=str,
    default="https://mainnet.base.org",
)
CHAIN_ID = get_env_variable(
    name="CHAIN_ID",
    type_=int,
    default=8453,
)

# Indexer configuration
SUBGRAPH_URL = get_env_variable(
    name="SUBGRAPH_URL",
    type_=str,
    default="http://localhost:8000/subgraphs/name/telx-v4-pool",
)
SUBGRAPH_PAGE_SIZE = get_env_variable(
    name="SUBGRAPH_PAGE_SIZE",
    type_=int,
    default=1000,
)
SUBGRAPH_TIMEOUT = get_env_variable(
    name="SUBGRAPH_TIMEOUT",
    type_=int,
    default=30,
)

# TELx pool configuration
POSITION_REGISTRY = get_env_variable(
    name="POSITION_REGISTRY",
    type_=str,
    default="0x3994e3ae3Cf62bD2a3a83dcE73636E954852BB04",
)
POOL_ID = get_env_variable(
    name="POOL_ID",
    type_=str,
    default="0x727b2741ac2b2df8bc9185e1de972661519fc07b156057eeed9b07c50e08829b",
)

# Classification configuration (PositionRegistry constants)
JIT_THRESHOLD_BLOCKS = get_env_variable(
    name="JIT_THRESHOLD_BLOCKS",
    type_=int,
    default=1,
)
LOOKBACK_BLOCKS = get_env_variable(
    name="LOOKBACK_BLOCKS",
    type_=int,
    default=43200,
)
ENFORCE_SUBSCRIPTION_AGE = get_env_variable(
    name="ENFORCE_SUBSCRIPTION_AGE",
    type_=bool,
    default=True,
)
