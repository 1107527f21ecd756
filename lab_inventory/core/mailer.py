# lab_inventory/core/mailer.py
import asyncio
import smtplib
from dataclasses import dataclass
from datetime import datetime, tzinfo
from email.message import EmailMessage
from html import escape
from typing import Optional, Protocol

from loguru import logger

from lab_inventory.core.clock import WIB
from lab_inventory.core.errors import NotificationError
from lab_inventory.models.borrowing import HydratedBorrow
from lab_inventory.models.enum import BorrowStatus, NotificationKind

_DAYS = ["Senin", "Selasa", "Rabu", "Kamis", "Jumat", "Sabtu", "Minggu"]
_MONTHS = [
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
]

STATUS_MESSAGES = {
    BorrowStatus.PENDING: "sedang menunggu persetujuan admin",
    BorrowStatus.APPROVED: "telah disetujui",
    BorrowStatus.REJECTED: "telah ditolak",
    BorrowStatus.BORROWED: "telah diserahkan kepada Anda",
    BorrowStatus.RETURNED: "telah dikembalikan",
    BorrowStatus.OVERDUE: "telah melewati batas waktu pengembalian",
}


@dataclass
class NotificationIntent:
    kind: NotificationKind
    borrow: HydratedBorrow
    previous_status: Optional[BorrowStatus] = None


@dataclass
class RenderedMail:
    to: str
    subject: str
    html: str


class Mailer(Protocol):
    async def send(self, intent: NotificationIntent) -> None: ...


def format_date(value: Optional[datetime], tz: tzinfo = WIB) -> str:
    """Format tanggal gaya Indonesia, misal 'Rabu, 10 Januari 2024 09.00'."""
    if value is None:
        return ""
    local = value.astimezone(tz) if value.tzinfo else value.replace(tzinfo=tz)
    return (
        f"{_DAYS[local.weekday()]}, {local.day} {_MONTHS[local.month - 1]} {local.year} "
        f"{local.hour:02d}.{local.minute:02d}"
    )


def _item_list(borrow: HydratedBorrow, with_condition: bool = False) -> str:
    rows = []
    for line in borrow.record.items:
        item = borrow.items.get(line.item_id)
        label = f"{escape(borrow.item_name(line.item_id))} ({escape(item.code if item else '-')})"
        if with_condition:
            label += f" - Kondisi: {line.condition.value}"
            if line.notes:
                label += f" - Catatan: {escape(line.notes)}"
        rows.append(f"<li>{label}</li>")
    return "".join(rows)


def render_message(
    intent: NotificationIntent, admin_email: str, lab_name: str, tz: tzinfo = WIB
) -> RenderedMail:
    borrow = intent.borrow
    record = borrow.record
    user = borrow.user
    user_name = escape(user.name)

    if intent.kind == NotificationKind.NEW_BORROW:
        if not admin_email:
            raise NotificationError("ADMIN_EMAIL is not configured")
        html = (
            "<h2>Permintaan Peminjaman Baru</h2>"
            f"<p><strong>Kode:</strong> {record.borrow_code}</p>"
            f"<p><strong>Peminjam:</strong> {user_name} ({escape(user.class_name or '-')})</p>"
            f"<p><strong>Email:</strong> {escape(str(user.email or '-'))}</p>"
            f"<p><strong>Tujuan:</strong> {escape(record.purpose)}</p>"
            f"<p><strong>Tanggal Peminjaman:</strong> {format_date(record.borrow_date, tz)}</p>"
            f"<p><strong>Tanggal Pengembalian:</strong> {format_date(record.due_date, tz)}</p>"
            f"<h3>Daftar Barang:</h3><ul>{_item_list(borrow, with_condition=True)}</ul>"
            "<p>Silakan cek sistem untuk menyetujui atau menolak permintaan ini.</p>"
        )
        return RenderedMail(to=admin_email, subject=f"Permintaan Peminjaman Baru - {user.name}", html=html)

    if not user.email:
        raise NotificationError(f"User {user.id} has no email address")

    if intent.kind == NotificationKind.STATUS_CHANGED:
        message = STATUS_MESSAGES[record.status]
        extra = ""
        if record.status == BorrowStatus.REJECTED and record.rejection_reason:
            extra = f"<p><strong>Alasan Penolakan:</strong> {escape(record.rejection_reason)}</p>"
        elif record.status == BorrowStatus.APPROVED:
            extra = f"<p>Silakan ambil barang di {escape(lab_name)} sesuai jadwal yang telah ditentukan.</p>"
        html = (
            "<h2>Update Status Peminjaman</h2>"
            f"<p>Peminjaman Anda ({record.borrow_code}) {message}.</p>"
            f"<p><strong>Tujuan:</strong> {escape(record.purpose)}</p>"
            f"<p><strong>Tanggal Peminjaman:</strong> {format_date(record.borrow_date, tz)}</p>"
            f"<p><strong>Tanggal Pengembalian:</strong> {format_date(record.due_date, tz)}</p>"
            f"<h3>Daftar Barang:</h3><ul>{_item_list(borrow)}</ul>{extra}"
        )
        return RenderedMail(to=str(user.email), subject=f"Status Peminjaman - {message}", html=html)

    if intent.kind == NotificationKind.DUE_REMINDER:
        html = (
            "<h2>Pengingat Pengembalian Barang</h2>"
            f"<p>Halo {user_name},</p>"
            "<p>Ini adalah pengingat bahwa peminjaman Anda jatuh tempo hari ini.</p>"
            f"<p><strong>Tanggal Pengembalian:</strong> {format_date(record.due_date, tz)}</p>"
            f"<h3>Daftar Barang:</h3><ul>{_item_list(borrow)}</ul>"
            f"<p>Mohon mengembalikan barang tepat waktu ke {escape(lab_name)}.</p>"
        )
        return RenderedMail(to=str(user.email), subject="Pengingat Pengembalian Barang", html=html)

    html = (
        "<h2>Pemberitahuan Keterlambatan</h2>"
        f"<p>Halo {user_name},</p>"
        "<p>Peminjaman Anda telah melewati batas waktu pengembalian.</p>"
        f"<p><strong>Tanggal Seharusnya:</strong> {format_date(record.due_date, tz)}</p>"
        f"<h3>Daftar Barang:</h3><ul>{_item_list(borrow)}</ul>"
        f"<p>Mohon segera mengembalikan barang ke {escape(lab_name)} untuk menghindari sanksi.</p>"
    )
    return RenderedMail(to=str(user.email), subject="Pemberitahuan Keterlambatan Pengembalian", html=html)


class SmtpMailer:
    """Kirim email lewat SMTP. smtplib blocking, jadi dijalankan di thread terpisah."""

    def __init__(
        self, host: str, port: int, username: str, password: str, sender: str,
        admin_email: str, lab_name: str, use_tls: bool = True, timeout: float = 10, tz: tzinfo = WIB,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.admin_email = admin_email
        self.lab_name = lab_name
        self.tz = tz
        self.use_tls = use_tls
        self.timeout = timeout

    async def send(self, intent: NotificationIntent) -> None:
        mail = render_message(intent, self.admin_email, self.lab_name, self.tz)
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = mail.to
        msg["Subject"] = mail.subject
        msg.set_content("Email ini membutuhkan klien yang mendukung HTML.")
        msg.add_alternative(mail.html, subtype="html")
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery to {mail.to} failed: {e}") from e
        logger.info(f"Mail '{mail.subject}' sent to {mail.to}")

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)


class LogMailer:
    """Mailer tanpa SMTP: hanya mencatat email ke log (development)."""

    def __init__(self, admin_email: str = "", lab_name: str = "Laboratorium RPL", tz: tzinfo = WIB):
        self.admin_email = admin_email
        self.lab_name = lab_name
        self.tz = tz

    async def send(self, intent: NotificationIntent) -> None:
        mail = render_message(intent, self.admin_email or "admin@localhost", self.lab_name, self.tz)
        logger.info(f"[mail disabled] to={mail.to} subject='{mail.subject}' borrow={intent.borrow.record.borrow_code}")
