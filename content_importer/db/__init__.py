"""Database initialization and persistence layer."""

from content_importer.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session_factory,
    init_db,
    reset_engine,
)
from content_importer.db.models import (
    ArticleDB,
    Base,
    CategoryDB,
    CrawlJobDB,
    CrawlSourceDB,
    ProductDB,
    ProductVariantDB,
    SelectorPresetDB,
)
from content_importer.db.repositories import (
    CatalogRepository,
    CategoryRepository,
    CrawlJobRepository,
    CrawlSourceRepository,
    FlatCategory,
    SelectorPresetRepository,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "init_db",
    "reset_engine",
    # Models
    "Base",
    "CrawlSourceDB",
    "CrawlJobDB",
    "SelectorPresetDB",
    "CategoryDB",
    "ArticleDB",
    "ProductDB",
    "ProductVariantDB",
    # Repositories
    "CrawlSourceRepository",
    "CrawlJobRepository",
    "SelectorPresetRepository",
    "CatalogRepository",
    "CategoryRepository",
    "FlatCategory",
]
