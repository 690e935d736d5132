import inspect
import logging
import threading
import weakref
from datetime import date

import bcrypt
from sqlalchemy import create_engine, Column, Integer, String, Float, Date, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, scoped_session

import config
from codes import apply_codes
from schema import InventoryRecord, DisposalStatus, Condition, ProcurementStatus

logger = logging.getLogger(__name__)

Base = declarative_base()


class PersistenceError(Exception):
    """A read or write against the store failed. Nothing was partially applied."""


# --- MODELS ---
class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    name = Column(String)
    role = Column(String, default=config.ROLE_USER, nullable=False)


class InventoryItem(Base):
    __tablename__ = config.INVENTORY_COLLECTION
    record_id = Column(String, primary_key=True)
    item_type = Column(String)
    sub_item_type = Column(String)
    sub_item_type_code = Column(String)
    main_item_number = Column(String)
    main_item_letter = Column(String)
    brand = Column(String)
    funding_source = Column(String)
    funding_item_order = Column(String)
    sub_item_order = Column(String)
    area = Column(String)
    sub_area = Column(String)
    procurement_date = Column(Date)
    supplier = Column(String)
    estimated_price = Column(Float, default=0.0)
    procurement_status = Column(String)
    disposal_status = Column(String, nullable=False, default=DisposalStatus.ACTIVE.value)
    disposal_date = Column(Date)
    quantity = Column(Integer, default=1)
    unit = Column(String)
    condition = Column(String)
    notes = Column(Text)
    item_verification_code = Column(String)
    funding_verification_code = Column(String)
    total_recap_code = Column(String)
    funding_recap_code = Column(String)
    disposal_recap_code = Column(String)

    COLUMNS = [
        "item_type", "sub_item_type", "sub_item_type_code", "main_item_number",
        "main_item_letter", "brand", "funding_source", "funding_item_order",
        "sub_item_order", "area", "sub_area", "procurement_date", "supplier",
        "estimated_price", "procurement_status", "disposal_status", "disposal_date",
        "quantity", "unit", "condition", "notes", "item_verification_code",
        "funding_verification_code", "total_recap_code", "funding_recap_code",
        "disposal_recap_code",
    ]

    def to_record(self):
        return InventoryRecord(
            record_id=self.record_id,
            item_type=self.item_type or "",
            sub_item_type=self.sub_item_type or "",
            sub_item_type_code=self.sub_item_type_code or "",
            main_item_number=self.main_item_number or "",
            main_item_letter=self.main_item_letter or "",
            brand=self.brand or "",
            funding_source=self.funding_source or "",
            funding_item_order=self.funding_item_order or "",
            sub_item_order=self.sub_item_order or "",
            area=self.area or "",
            sub_area=self.sub_area or "",
            procurement_date=self.procurement_date,
            supplier=self.supplier or "",
            estimated_price=self.estimated_price or 0.0,
            procurement_status=ProcurementStatus(self.procurement_status) if self.procurement_status else None,
            disposal_status=DisposalStatus(self.disposal_status or DisposalStatus.ACTIVE.value),
            disposal_date=self.disposal_date,
            quantity=self.quantity if self.quantity is not None else 1,
            unit=self.unit or "",
            condition=Condition(self.condition) if self.condition else Condition.GOOD,
            notes=self.notes or "",
            item_verification_code=self.item_verification_code or "",
            funding_verification_code=self.funding_verification_code or "",
            total_recap_code=self.total_recap_code or "",
            funding_recap_code=self.funding_recap_code or "",
            disposal_recap_code=self.disposal_recap_code,
        )

    def apply_document(self, doc, merge=False):
        """Copy document values onto the row. Without merge, absent keys are cleared."""
        for column in self.COLUMNS:
            if column in doc:
                setattr(self, column, doc[column])
            elif not merge:
                setattr(self, column, None)


# --- CONTROLLER ---
class Database:
    def __init__(self, url=None):
        self.url = url or config.DB_URL
        connect_args = {'check_same_thread': False} if self.url.startswith("sqlite") else {}
        self.engine = create_engine(self.url, connect_args=connect_args)
        Base.metadata.create_all(self.engine)
        self.Session = scoped_session(sessionmaker(bind=self.engine))
        self._listeners = []
        self._listeners_lock = threading.Lock()
        self.create_default_admin()

    def get_session(self):
        return self.Session()

    def close(self):
        self.Session.remove()
        self.engine.dispose()

    # --- USER AUTH ---
    @staticmethod
    def _hash_password(password):
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def create_default_admin(self):
        session = self.get_session()
        try:
            if session.query(User).count() == 0:
                admin = User(
                    username=config.DEFAULT_ADMIN_USERNAME,
                    password_hash=self._hash_password(config.DEFAULT_ADMIN_PASSWORD),
                    name="Admin Sekolah",
                    role=config.ROLE_ADMIN,
                )
                session.add(admin)
                session.commit()
                logger.info("Created default admin account '%s'", admin.username)
        finally:
            session.close()

    def verify_user(self, username, password):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(username=username).first()
            if user and bcrypt.checkpw(password.encode('utf-8'), user.password_hash.encode('utf-8')):
                return (user.id, user.username, user.name, user.role)
            return None
        finally:
            session.close()

    def add_user(self, username, password, name=None, role=config.ROLE_USER):
        if role not in config.ROLES:
            raise ValueError(f"unknown role: {role}")
        session = self.get_session()
        try:
            if session.query(User).filter_by(username=username).first():
                return False
            session.add(User(username=username, password_hash=self._hash_password(password),
                             name=name or username, role=role))
            session.commit()
            return True
        finally:
            session.close()

    def get_all_users(self):
        session = self.get_session()
        try:
            return [(u.id, u.username, u.name, u.role) for u in session.query(User).order_by(User.id).all()]
        finally:
            session.close()

    def delete_user(self, user_id):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(id=user_id).first()
            if user:
                session.delete(user)
                session.commit()
        finally:
            session.close()

    def update_user_role(self, user_id, new_role):
        if new_role not in config.ROLES:
            raise ValueError(f"unknown role: {new_role}")
        session = self.get_session()
        try:
            user = session.query(User).filter_by(id=user_id).first()
            if user:
                user.role = new_role
                session.commit()
        finally:
            session.close()

    def update_user_password(self, user_id, new_password):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(id=user_id).first()
            if user:
                user.password_hash = self._hash_password(new_password)
                session.commit()
        finally:
            session.close()

    # --- INVENTORY READS ---
    def get_all_records(self):
        session = self.get_session()
        try:
            rows = session.query(InventoryItem).order_by(InventoryItem.record_id).all()
            return [r.to_record() for r in rows]
        except SQLAlchemyError as e:
            logger.exception("Reading inventory failed")
            raise PersistenceError(f"Reading inventory failed: {e}") from e
        finally:
            session.close()

    def get_record(self, record_id):
        session = self.get_session()
        try:
            row = session.get(InventoryItem, record_id)
            return row.to_record() if row else None
        except SQLAlchemyError as e:
            logger.exception("Reading record %s failed", record_id)
            raise PersistenceError(f"Reading record {record_id} failed: {e}") from e
        finally:
            session.close()

    def count_records(self):
        session = self.get_session()
        try:
            return session.query(InventoryItem).count()
        finally:
            session.close()

    # --- INVENTORY WRITES ---
    def _write(self, action, apply):
        """Run apply(session) in one transaction, then notify subscribers."""
        session = self.get_session()
        try:
            result = apply(session)
            session.commit()
        except (SQLAlchemyError, ValueError) as e:
            session.rollback()
            logger.exception("%s failed", action)
            raise PersistenceError(f"{action} failed: {e}") from e
        finally:
            session.close()
        self._notify()
        return result

    @staticmethod
    def _upsert(session, record, merge):
        if not record.record_id:
            raise ValueError("record_id is required")
        row = session.get(InventoryItem, record.record_id)
        if row is None:
            row = InventoryItem(record_id=record.record_id)
            session.add(row)
            merge = False
        row.apply_document(record.to_document(), merge=merge)

    def upsert_record(self, record, merge=False):
        self._write(f"Saving record {record.record_id}", lambda s: self._upsert(s, record, merge))

    def upsert_records(self, records, merge=False):
        records = list(records)

        def apply(session):
            for record in records:
                self._upsert(session, record, merge)
            return len(records)

        return self._write(f"Batch save of {len(records)} records", apply)

    def delete_record(self, record_id):
        def apply(session):
            row = session.get(InventoryItem, record_id)
            if row is None:
                return False
            session.delete(row)
            return True

        return self._write(f"Deleting record {record_id}", apply)

    def delete_records(self, record_ids):
        record_ids = list(record_ids)

        def apply(session):
            return (session.query(InventoryItem)
                    .filter(InventoryItem.record_id.in_(record_ids))
                    .delete(synchronize_session=False))

        return self._write(f"Batch delete of {len(record_ids)} records", apply)

    # --- SUBSCRIPTIONS ---
    def subscribe(self, listener):
        """Call listener(records) now and after every committed change.

        Bound methods are held by weak reference: once their owner is garbage
        collected (e.g. a closed browser session's feed) they stop being called.
        Returns a function that detaches the listener.
        """
        records = self.get_all_records()
        if inspect.ismethod(listener):
            ref = weakref.WeakMethod(listener)
        else:
            def ref():
                return listener
        with self._listeners_lock:
            self._listeners.append(ref)
        self._deliver(listener, records)

        def unsubscribe():
            with self._listeners_lock:
                self._listeners = [r for r in self._listeners if r is not ref]

        return unsubscribe

    def listener_count(self):
        with self._listeners_lock:
            return sum(1 for ref in self._listeners if ref() is not None)

    def _notify(self):
        with self._listeners_lock:
            live = [(ref, ref()) for ref in self._listeners]
            self._listeners = [ref for ref, listener in live if listener is not None]
            listeners = [listener for _, listener in live if listener is not None]
        if not listeners:
            return
        try:
            records = self.get_all_records()
        except PersistenceError:
            return
        for listener in listeners:
            self._deliver(listener, records)

    @staticmethod
    def _deliver(listener, records):
        try:
            listener(list(records))
        except Exception:
            logger.exception("Inventory listener %r failed", listener)

    # --- DEMO DATA ---
    def seed_sample_records(self, count=55):
        if self.count_records():
            return 0
        item_types = ['MEJA', 'KURSI', 'LEMARI', 'KOMPUTER', 'PROYEKTOR']
        areas = ['KELAS', 'PERPUSTAKAAN', 'LABORATORIUM', 'KANTOR', 'AULA']
        records = []
        for i in range(count):
            disposed = i % 10 == 0
            letter = chr(65 + i % 5)
            procured = date(2020 + i % 4, i % 12 + 1, i % 28 + 1)
            record = InventoryRecord(
                record_id=str(i + 1),
                item_type=item_types[i % 5],
                main_item_number=str(i % 9 + 1),
                main_item_letter=letter,
                sub_item_type=f"{item_types[i % 5]} SISWA",
                brand=f"Merek {chr(65 + i % 26)}",
                sub_item_type_code=f"0{i % 5 + 1}",
                sub_item_order=str(1000 + i),
                funding_source='KOMITE' if i % 3 == 0 else 'BOS',
                funding_item_order=str(1000 + i),
                area=areas[i % 5],
                sub_area=f"{areas[i % 5]} GEDUNG {letter} 01.0{i % 9 + 1}",
                procurement_date=procured,
                supplier=f"Supplier {chr(88 + i % 3)}",
                estimated_price=float(500000 + i * 10000),
                procurement_status=ProcurementStatus.NEW if i % 2 == 0 else ProcurementStatus.SECOND_HAND,
                disposal_status=DisposalStatus.DISPOSED if disposed else DisposalStatus.ACTIVE,
                disposal_date=procured.replace(year=procured.year + 1) if disposed else None,
                quantity=1,
                unit=config.DEFAULT_UNIT,
                condition=Condition.GOOD,
            )
            records.append(apply_codes(record))
        return self.upsert_records(records)
