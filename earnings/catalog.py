"""Admin-managed catalogs: affiliate products, games and tasks."""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, TypeVar
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from .balance import require_positive_amount
from .errors import InvalidProductConfiguration, NotFoundError, ValidationError
from .logging import get_logger
from .models import (
    AffiliateProduct,
    Game,
    GameInput,
    GameUpdate,
    ProductInput,
    ProductUpdate,
    Task,
    TaskInput,
    TaskUpdate,
)
from .rewards import GAMES, TASKS
from .service import PRODUCTS, local_now, parse_base_commission
from .store import Increment, InMemoryDocumentStore, Transaction

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

MAX_BASE_COMMISSION = Decimal("100")


def validate_base_commission(value) -> Decimal:
    base = parse_base_commission(value)
    if base > MAX_BASE_COMMISSION:
        raise InvalidProductConfiguration("Base commission must be a percentage between 0 and 100.")
    return base


class CatalogService:
    def __init__(self, store: InMemoryDocumentStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or local_now

    # ==================== GENERIC ====================

    def _create(self, collection: str, model: type[M], data: dict) -> M:
        doc_id = uuid4().hex
        item = model.model_validate({**data, "id": doc_id, "created_at": self._clock()})
        self.store.create(collection, item.model_dump(), doc_id=doc_id)
        logger.info("Created %s/%s", collection, doc_id)
        return item

    def _get(self, collection: str, model: type[M], doc_id: str) -> M:
        doc = self.store.get(collection, doc_id)
        if doc is None:
            raise NotFoundError(f"{model.__name__} {doc_id} not found")
        return model.model_validate(doc)

    def _list(self, collection: str, model: type[M], active_only: bool = False) -> list[M]:
        filters = {"is_active": True} if active_only else None
        docs = self.store.query(collection, filters, order_by="created_at", descending=True)
        return [model.model_validate(d) for d in docs]

    def _update(self, collection: str, model: type[M], doc_id: str, changes: dict) -> M:
        if not changes:
            raise ValidationError("No fields to update.")

        def work(txn: Transaction) -> M:
            doc = txn.get(collection, doc_id)
            if doc is None:
                raise NotFoundError(f"{model.__name__} {doc_id} not found")
            try:
                item = model.model_validate({**doc, **changes})
            except SchemaError as e:
                raise ValidationError(f"Invalid {model.__name__} update: {e.error_count()} invalid field(s)")
            txn.update(collection, doc_id, changes)
            return item

        item = self.store.run_transaction(work)
        logger.info("Updated %s/%s: %s", collection, doc_id, sorted(changes))
        return item

    def _delete(self, collection: str, model: type[M], doc_id: str) -> None:
        def work(txn: Transaction) -> None:
            if txn.get(collection, doc_id) is None:
                raise NotFoundError(f"{model.__name__} {doc_id} not found")
            txn.delete(collection, doc_id)

        self.store.run_transaction(work)
        logger.info("Deleted %s/%s", collection, doc_id)

    # ==================== AFFILIATE PRODUCTS ====================

    def create_product(self, data: ProductInput) -> AffiliateProduct:
        values = data.model_dump()
        values["base_commission"] = validate_base_commission(data.base_commission)
        return self._create(PRODUCTS, AffiliateProduct, values)

    def get_product(self, product_id: str) -> AffiliateProduct:
        return self._get(PRODUCTS, AffiliateProduct, product_id)

    def list_products(self, active_only: bool = False) -> list[AffiliateProduct]:
        return self._list(PRODUCTS, AffiliateProduct, active_only)

    def update_product(self, product_id: str, data: ProductUpdate) -> AffiliateProduct:
        # Sales counters are only moved by record_sale / record_click
        changes = data.model_dump(exclude_unset=True)
        if "base_commission" in changes:
            changes["base_commission"] = validate_base_commission(changes["base_commission"])
        if changes:
            changes["updated_at"] = self._clock()
        return self._update(PRODUCTS, AffiliateProduct, product_id, changes)

    def delete_product(self, product_id: str) -> None:
        self._delete(PRODUCTS, AffiliateProduct, product_id)

    def record_click(self, product_id: str) -> AffiliateProduct:
        def work(txn: Transaction) -> None:
            doc = txn.get(PRODUCTS, product_id)
            if doc is None or not doc.get("is_active", True):
                raise NotFoundError(f"AffiliateProduct {product_id} not found")
            txn.update(PRODUCTS, product_id, {"total_clicks": Increment(1)})

        self.store.run_transaction(work)
        return self.get_product(product_id)

    # ==================== GAMES ====================

    def create_game(self, data: GameInput) -> Game:
        return self._create(GAMES, Game, data.model_dump())

    def get_game(self, game_id: str) -> Game:
        return self._get(GAMES, Game, game_id)

    def list_games(self, active_only: bool = False) -> list[Game]:
        return self._list(GAMES, Game, active_only)

    def update_game(self, game_id: str, data: GameUpdate) -> Game:
        return self._update(GAMES, Game, game_id, data.model_dump(exclude_unset=True))

    def delete_game(self, game_id: str) -> None:
        self._delete(GAMES, Game, game_id)

    # ==================== TASKS ====================

    def create_task(self, data: TaskInput) -> Task:
        values = data.model_dump()
        values["reward"] = require_positive_amount(data.reward, "reward")
        return self._create(TASKS, Task, values)

    def get_task(self, task_id: str) -> Task:
        return self._get(TASKS, Task, task_id)

    def list_tasks(self, active_only: bool = False) -> list[Task]:
        return self._list(TASKS, Task, active_only)

    def update_task(self, task_id: str, data: TaskUpdate) -> Task:
        changes = data.model_dump(exclude_unset=True)
        if "reward" in changes:
            changes["reward"] = require_positive_amount(changes["reward"], "reward")
        return self._update(TASKS, Task, task_id, changes)

    def delete_task(self, task_id: str) -> None:
        self._delete(TASKS, Task, task_id)
