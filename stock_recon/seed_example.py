from datetime import date
from decimal import Decimal

from sqlalchemy import select

from stock_recon.db import SessionLocal, engine
from stock_recon.models import Base, Product, Store, StoreSetting
from stock_recon.services.auto_compare_service import auto_compare_if_ready
from stock_recon.services.catalog_sync_service import sync_catalog_from_ingest
from stock_recon.services.manual_count_service import save_manual_counts
from stock_recon.services.provider_factory import get_notifier
from stock_recon.services.sql_stores import build_sql_backend
from stock_recon.services.stores import IngestItemInput, ManualCountInput

DEMO_PRODUCTS = [
    ('BEER-001', 'House Lager 330ml', 'bottle', 'beer'),
    ('BEER-002', 'Pale Ale 330ml', 'bottle', 'beer'),
    ('WHSK-001', 'Blended Whisky 700ml', 'bottle', 'spirits'),
    ('SODA-001', 'Soda Water 325ml', 'can', 'mixer'),
]

DEMO_MANUAL_COUNTS = {
    'BEER-001': Decimal('48'),
    'BEER-002': Decimal('22'),
    'WHSK-001': Decimal('5'),
}

DEMO_POS_ITEMS = [
    IngestItemInput('BEER-001', 'House Lager 330ml', Decimal('48'), 'bottle', 'beer'),
    IngestItemInput('BEER-002', 'Pale Ale 330ml', Decimal('24'), 'bottle', 'beer'),
    IngestItemInput('WHSK-001', 'Blended Whisky 700ml', Decimal('0'), 'bottle', 'spirits'),
    IngestItemInput('GIN-001', 'London Dry Gin 700ml', Decimal('3'), 'bottle', 'spirits'),
]


def seed(business_date: date | None = None) -> None:
    business_date = business_date or date.today()
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        store = db.execute(select(Store).where(Store.name == 'Downtown Bar')).scalar_one_or_none()
        if not store:
            store = Store(name='Downtown Bar', active=True)
            db.add(store)
            db.flush()

        setting = db.execute(select(StoreSetting).where(StoreSetting.store_id == store.id)).scalar_one_or_none()
        if not setting:
            db.add(StoreSetting(store_id=store.id, diff_tolerance_percent=Decimal('5')))

        existing_codes = set(
            db.execute(select(Product.product_code).where(Product.store_id == store.id)).scalars().all()
        )
        for code, name, unit, category in DEMO_PRODUCTS:
            if code not in existing_codes:
                db.add(Product(store_id=store.id, product_code=code, product_name=name, unit=unit, category=category))

        db.flush()

        backend = build_sql_backend(db, notifier=get_notifier())
        save_manual_counts(
            backend,
            store_id=store.id,
            count_date=business_date,
            counts=[ManualCountInput(code, qty) for code, qty in DEMO_MANUAL_COUNTS.items()],
        )
        sync = sync_catalog_from_ingest(
            backend,
            store_id=store.id,
            items=DEMO_POS_ITEMS,
            upload_date=business_date,
        )
        result = auto_compare_if_ready(backend, store_id=store.id, comp_date=business_date)
        db.commit()

    print(f'Catalog sync: {sync.summary()}')
    print(f'Auto-compare: {result.reason.value} {result.summary.as_dict() if result.summary else ""}')


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
