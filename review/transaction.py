import logging

from django.db import DEFAULT_DB_ALIAS, transaction

logger = logging.getLogger(__name__)


class TransactionScope:
    """
    Явный дескриптор открытой транзакции.

    Репозитории получают его в каждом вызове и выполняют запросы через
    ``using``. Флаг ``active`` выставлен, пока внешний run() не завершился.
    """

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self.using = using
        self.active = False

    def __repr__(self):
        return f"TransactionScope(using={self.using!r}, active={self.active})"


class TransactionManager:
    """
    Выполняет единицу работы атомарно: коммит, если она завершилась без
    исключения, иначе откат всех записей. Вызов с активным scope
    выполняется внутри него же, без вложенного коммита.
    """

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self.using = using

    def run(self, unit_of_work, scope: TransactionScope = None):
        if scope is not None and scope.active:
            return unit_of_work(scope)

        scope = TransactionScope(self.using)
        try:
            with transaction.atomic(using=self.using):
                scope.active = True
                return unit_of_work(scope)
        except Exception as exc:
            logger.debug(f"Transaction rolled back: {exc!r}")
            raise
        finally:
            scope.active = False
