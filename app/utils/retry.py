import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 0.4,
    exc: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Reintenta await fn() hasta `attempts` veces con backoff exponencial:
    base, 2*base, 4*base, ...

    - fn: función sin argumentos que devuelve una coroutine
      (p.ej. lambda: whatsapp.send_message(...))
    - exc: tipos de excepción que activan el reintento; el último error se re-lanza
    """
    for i in range(attempts):
        try:
            return await fn()
        except exc as e:
            if i == attempts - 1:
                raise
            delay = base_delay * (2 ** i)
            logger.warning("🔁 Intento %s/%s falló (%s); reintentando en %.1fs", i + 1, attempts, e, delay)
            await asyncio.sleep(delay)
    raise RuntimeError("retry_async requires attempts >= 1")
