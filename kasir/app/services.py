from dataclasses import dataclass
from typing import Optional

from .auth import AuthService
from .cart import CartStore, LocalCartPersistence
from .checkout import CheckoutService
from .config import settings
from .local_store import LocalStore
from .query import Backend
from .reports import ReportQueryEngine
from .settings_repo import SettingsRepo
from .storage.s3 import ObjectStorage


@dataclass
class Services:
    backend: Backend
    store: LocalStore
    cart: CartStore
    auth: AuthService
    settings_repo: SettingsRepo
    checkout: CheckoutService
    reports: ReportQueryEngine
    storage: ObjectStorage

    def reset_reports(self) -> None:
        # Report sessions never carry over between users.
        self.reports = ReportQueryEngine(self.backend, page_size=settings.report_page_size)


def build_services(backend: Backend, store: LocalStore, storage: Optional[ObjectStorage] = None) -> Services:
    cart = CartStore(LocalCartPersistence(store))
    settings_repo = SettingsRepo(backend)
    return Services(
        backend=backend,
        store=store,
        cart=cart,
        auth=AuthService(backend, cart, store),
        settings_repo=settings_repo,
        checkout=CheckoutService(backend, cart, settings_repo),
        reports=ReportQueryEngine(backend, page_size=settings.report_page_size),
        storage=storage or ObjectStorage(),
    )
