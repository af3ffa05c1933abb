"""Process-wide singletons shared by the routes and the scheduler."""

from functools import lru_cache

from fastapi import Depends

from src.clients.simpro_client import SimproClient
from src.handlers.reconciliation import ClientFactory, ReconciliationEngine
from src.handlers.renewal_runner import RenewalRunner
from src.idempotency import IdempotencyStore, build_store


def simpro_client_factory() -> SimproClient:
    return SimproClient()


def get_client_factory() -> ClientFactory:
    return simpro_client_factory


@lru_cache
def get_engine() -> ReconciliationEngine:
    return ReconciliationEngine(simpro_client_factory)


@lru_cache
def get_manual_store() -> IdempotencyStore:
    return build_store("manual")


def get_renewal_runner(
    engine: ReconciliationEngine = Depends(get_engine),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> RenewalRunner:
    return RenewalRunner.for_engine(engine, client_factory)
