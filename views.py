import math
import time
from datetime import date

import pandas as pd
import plotly.express as px
import streamlit as st

import config
from auth import PermissionDenied
from database import PersistenceError
from exporter import ReportType, ExportFormat, ReportError, EmptyReportError, MIME_TYPES, records_to_frame
from importer import ImportFileError, ImportOptions
from schema import ValidationError, DisposalStatus, Condition, ProcurementStatus
from services import inventory_stats, paginate, RecordNotFound

TABLE_COLUMNS = [
    "record_id", "item_type", "brand", "area", "procurement_date", "estimated_price",
    "quantity", "unit", "condition", "disposal_status", "item_verification_code",
]

CLASSIFICATION_FIELDS = [
    "main_item_number", "main_item_letter", "sub_item_type", "sub_item_type_code",
    "sub_item_order", "funding_source", "funding_item_order", "sub_area", "supplier",
]


def format_rupiah(value):
    return "Rp " + f"{value:,.0f}".replace(",", ".")


def show_validation_errors(err):
    for field_name, reasons in err.by_field().items():
        label = config.FIELD_LABELS.get(field_name, field_name)
        for reason in reasons:
            st.error(f"**{label}**: {reason}")


# --- COMPONENT: ADD / EDIT FORM ---
def record_form(key, initial=None):
    """Render the record form. Returns the submitted values, or None."""
    # Placeholder text shows as an empty input; blanks are stored as the placeholder again
    init = {k: v for k, v in (initial.to_document() if initial else {}).items()
            if v != config.EMPTY_PLACEHOLDER}

    def _index(enum_cls, current, default):
        values = [m.value for m in enum_cls]
        return values.index(current) if current in values else values.index(default.value)

    with st.form(key):
        c1, c2 = st.columns(2)
        item_type = c1.text_input("Jenis Barang *", value=init.get("item_type", ""), placeholder="e.g., Meja Siswa")
        brand = c2.text_input("Merk/Tipe *", value=init.get("brand", ""), placeholder="e.g., Olympic")
        area = c1.text_input("Area/Ruang *", value=init.get("area", ""), placeholder="e.g., Kelas 1A")
        notes = c2.text_input("Keterangan", value=init.get("notes", ""))

        st.divider()
        c3, c4, c5 = st.columns(3)
        quantity = c3.number_input("Jumlah *", min_value=0, step=1, value=int(init.get("quantity", 1)))
        unit = c4.text_input("Satuan *", value=init.get("unit", config.DEFAULT_UNIT))
        price = c5.number_input("Harga (Rp)", min_value=0.0, step=1000.0, format="%.0f",
                                value=float(init.get("estimated_price", 0.0)))

        st.divider()
        c6, c7, c8 = st.columns(3)
        condition = c6.selectbox("Kondisi *", [m.value for m in Condition],
                                 index=_index(Condition, init.get("condition"), Condition.GOOD))
        procurement_options = [""] + [m.value for m in ProcurementStatus]
        current_proc = init.get("procurement_status", ProcurementStatus.NEW.value if not initial else "")
        procurement_status = c7.selectbox("Status Pengadaan", procurement_options,
                                          index=procurement_options.index(current_proc) if current_proc in procurement_options else 0)
        procurement_date = c8.date_input("Tanggal Pengadaan", value=init.get("procurement_date", None if initial else date.today()))

        st.subheader("Status & Penghapusan")
        c9, c10 = st.columns(2)
        disposal_status = c9.selectbox("Status Barang *", [m.value for m in DisposalStatus],
                                       index=_index(DisposalStatus, init.get("disposal_status"), DisposalStatus.ACTIVE))
        disposal_date = c10.date_input("Tanggal Hapus (required if 'dihapus')", value=init.get("disposal_date"))

        with st.expander("Klasifikasi & Sumber Dana"):
            extra = {}
            cols = st.columns(3)
            for i, name in enumerate(CLASSIFICATION_FIELDS):
                extra[name] = cols[i % 3].text_input(config.FIELD_LABELS[name], value=init.get(name, ""), key=f"{key}_{name}")

        submitted = st.form_submit_button("Simpan Perubahan" if initial else "Simpan Data", type="primary", use_container_width=True)

    if not submitted:
        return None
    values = {
        "item_type": item_type, "brand": brand, "area": area, "notes": notes,
        "quantity": quantity, "unit": unit, "estimated_price": price,
        "condition": condition, "procurement_status": procurement_status or None,
        "procurement_date": procurement_date, "disposal_status": disposal_status,
        "disposal_date": disposal_date,
    }
    values.update(extra)
    return values


# --- COMPONENT: RECORD DETAILS POPUP ---
@st.dialog("Detail Inventaris", width="large")
def show_record_dialog(record, user, service):
    st.header(f"{record.item_type} - {record.brand}")
    st.caption("No. Data (click to copy)")
    st.code(record.record_id, language=None)

    doc = record.to_document()
    tabs = st.tabs(["ℹ️ Detail", "✏️ Edit"] if user.is_admin else ["ℹ️ Detail"])
    with tabs[0]:
        col1, col2 = st.columns(2)
        shown = [f for f in config.COLUMN_ORDER
                 if f != "record_id" and doc.get(f) not in (None, "", config.EMPTY_PLACEHOLDER)]
        for i, name in enumerate(shown):
            value = doc[name]
            if name == "estimated_price":
                value = format_rupiah(value)
            (col1 if i % 2 == 0 else col2).write(f"**{config.FIELD_LABELS[name]}:** {value}")

    if user.is_admin:
        with tabs[1]:
            values = record_form(f"edit_{record.record_id}", initial=record)
            if values is not None:
                try:
                    service.update_record(user, record.record_id, values)
                    st.success("Data inventaris berhasil diperbarui.")
                    time.sleep(1); st.rerun()
                except ValidationError as e:
                    show_validation_errors(e)
                except RecordNotFound:
                    st.error(f"Data {record.record_id} sudah dihapus oleh pengguna lain.")
                except (PersistenceError, PermissionDenied) as e:
                    st.error(f"Gagal menyimpan data: {e}")


# --- VIEW 1: DASHBOARD ---
def show_dashboard(service, user, records):
    st.title("📊 Dashboard")
    if not user.is_admin:
        st.error("🔒 Restricted Access"); return
    st.caption(f"Selamat datang, {user.display_name}. Berikut ringkasan data inventaris.")

    stats = inventory_stats(records)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total Nilai Inventaris", format_rupiah(stats["total_value"]))
    c2.metric("Total Barang", stats["total"])
    c3.metric("Barang Aktif", stats["active"])
    c4.metric("Barang Dihapus", stats["disposed"])
    st.markdown("---")

    st.subheader("Pengadaan Barang per Tahun")
    if stats["per_year"]:
        df_year = pd.DataFrame(stats["per_year"], columns=["Tahun", "Total"])
        df_year["Tahun"] = df_year["Tahun"].astype(str)
        fig = px.bar(df_year, x="Tahun", y="Total", text_auto=True)
        st.plotly_chart(fig, use_container_width=True)
    else:
        st.info("No data available.")


# --- VIEW 2: INVENTORY ---
def show_inventory(service, user, records):
    st.title("📋 Data Inventaris")

    tabs = ["📋 Daftar", "➕ Tambah Data", "📂 Import"] if user.is_admin else ["📋 Daftar"]
    t = st.tabs(tabs)

    with t[0]:
        search = st.text_input("🔍 Cari berdasarkan jenis barang...", placeholder="e.g., MEJA")
        shown = [r for r in records if search.lower() in r.item_type.lower()] if search else list(records)

        if not shown:
            st.warning("Tidak ada hasil.")
        else:
            page = 1
            if len(shown) > config.PAGE_SIZE:
                pages = math.ceil(len(shown) / config.PAGE_SIZE)
                page = st.number_input(f"Halaman (1-{pages})", min_value=1, max_value=pages, value=1, step=1)
            page_records, pages = paginate(shown, page)

            df = records_to_frame(page_records, TABLE_COLUMNS)
            event = st.dataframe(
                df, on_select="rerun", selection_mode="multi-row" if user.is_admin else "single-row",
                use_container_width=True, hide_index=True,
                column_config={config.FIELD_LABELS["estimated_price"]: st.column_config.NumberColumn(format="%d")},
            )
            st.caption(f"Halaman {page} dari {pages} - {len(shown)} dari {len(records)} data.")

            rows = event.selection.rows
            if len(rows) == 1:
                show_record_dialog(page_records[rows[0]], user, service)
            elif len(rows) > 1 and user.is_admin:
                selected = [page_records[i].record_id for i in rows]
                st.info(f"✅ **{len(selected)} baris terpilih**")
                if st.button(f"🗑️ Hapus {len(selected)} data", type="secondary"):
                    try:
                        deleted = service.delete_records(user, selected)
                        st.success(f"{deleted} data dihapus.")
                        time.sleep(1); st.rerun()
                    except (PersistenceError, PermissionDenied) as e:
                        st.error(f"Gagal menghapus data: {e}")

    if not user.is_admin:
        return

    with t[1]:
        st.caption("Fields marked with * are required.")
        values = record_form("new_record")
        if values is not None:
            try:
                record = service.create_record(user, values)
                st.success(f"Data {record.record_id} berhasil ditambahkan!")
                time.sleep(1); st.rerun()
            except ValidationError as e:
                show_validation_errors(e)
            except (PersistenceError, PermissionDenied) as e:
                st.error(f"Gagal menyimpan data: {e}")

    with t[2]:
        show_import(service, user)


def show_import(service, user):
    st.info("Headers are matched by name (template version "
            f"{config.IMPORT_TEMPLATE_VERSION}). Blank cells take default values.")
    c1, c2 = st.columns(2)
    c1.download_button("⬇ Template (.xlsx)", data=service.import_template(user, "xlsx"),
                       file_name="template_inventaris.xlsx", mime=MIME_TYPES[ExportFormat.XLSX])
    c2.download_button("⬇ Template (.csv)", data=service.import_template(user, "csv"),
                       file_name="template_inventaris.csv", mime="text/csv")

    up = st.file_uploader("Upload file", type=["xlsx", "xls", "csv"])
    skip_rows = st.number_input("Rows above the header", min_value=0, step=1, value=0)
    # Click sets the flag and reruns, so the import itself runs under a disabled button
    busy = st.session_state.get("import_busy", False)
    if st.button("Import", type="primary", disabled=busy or not up):
        st.session_state.import_busy = True
        st.rerun()
    if busy and not up:
        st.session_state.import_busy = False
    if busy and up:
        try:
            with st.spinner("Importing..."):
                result = service.import_file(user, up.getvalue(), up.name, ImportOptions(skip_rows=int(skip_rows)))
        except ImportFileError as e:
            st.error(f"File could not be imported: {e}")
            return
        except (PersistenceError, PermissionDenied) as e:
            st.error(f"Import failed, nothing was saved: {e}")
            return
        finally:
            st.session_state.import_busy = False

        if result.succeeded:
            st.success(f"Imported {result.succeeded} of {result.total_rows} rows.")
        if result.failed:
            st.warning(f"{result.failed} rows were skipped.")
            st.code("\n".join(result.errors), language=None)
        for warning in result.warnings:
            st.caption(f"⚠️ {warning}")


# --- VIEW 3: REPORTS ---
def show_reports(service, user, records):
    st.title("🖨️ Laporan Inventaris")
    if not user.is_admin:
        st.error("Denied: Admin Access Required"); return

    c1, c2 = st.columns(2)
    report_type = c1.selectbox("Jenis Laporan", list(ReportType), format_func=lambda rt: rt.heading)
    fmt = c2.selectbox("Format File", list(ExportFormat), format_func=lambda f: f".{f.value}")

    st.write("Rentang Tanggal Pengadaan (Laporan Pengadaan only)")
    d1, d2 = st.columns(2)
    date_from = d1.date_input("Dari", value=None)
    date_to = d2.date_input("Sampai", value=None)

    if st.button("⬇ Buat Laporan", type="primary"):
        try:
            report = service.export_report(user, report_type, fmt, date_from, date_to, records=records)
        except EmptyReportError as e:
            st.warning(f"Tidak ada data yang cocok. {e}")
            return
        except (ReportError, PermissionDenied) as e:
            st.error(str(e))
            return
        for warning in report.warnings:
            st.warning(warning)
        st.success(f"{report.row_count} data siap diunduh.")
        st.download_button("Unduh Laporan", data=report.data, file_name=report.filename, mime=report.mime)


# --- VIEW 4: ADMIN ---
def show_admin(db, user):
    st.title("🛡️ Admin Panel")
    if not user.is_admin:
        st.error("Denied: Admin Access Required"); return

    u_tab1, u_tab2 = st.tabs(["Create User", "Manage Existing Users"])
    with u_tab1:
        with st.form("new_u"):
            c1, c2, c3, c4 = st.columns(4)
            u = c1.text_input("Username")
            n = c2.text_input("Name")
            p = c3.text_input("Password", type="password")
            r = c4.selectbox("Role", config.ROLES)
            if st.form_submit_button("Create User"):
                if u and p:
                    if db.add_user(u, p, n, r): st.success(f"User '{u}' Created"); time.sleep(1); st.rerun()
                    else: st.error("Username already exists.")

    with u_tab2:
        all_users = db.get_all_users()
        user_map = {f"{usr[1]} ({usr[3]})": usr for usr in all_users}
        selected_label = st.selectbox("Select User to Manage", [""] + list(user_map.keys()))
        if selected_label:
            uid, uname, _, urole = user_map[selected_label]
            c_role, c_pass, c_del = st.columns(3)
            with c_role:
                new_role = st.selectbox("New Role", config.ROLES, index=config.ROLES.index(urole), key=f"r_{uid}")
                if st.button("Update Role", key=f"btn_r_{uid}"): db.update_user_role(uid, new_role); st.success("Updated!"); st.rerun()
            with c_pass:
                new_pass_val = st.text_input("New Password", type="password", key=f"p_{uid}")
                if st.button("Update Password", key=f"btn_p_{uid}"):
                    if new_pass_val: db.update_user_password(uid, new_pass_val); st.success("Updated!")
            with c_del:
                st.write("Danger Zone")
                if st.button("🗑️ Delete User", key=f"del_{uid}", type="primary"):
                    if uname == user.username: st.error("You cannot delete yourself.")
                    else: db.delete_user(uid); st.success(f"Deleted {uname}"); st.rerun()
