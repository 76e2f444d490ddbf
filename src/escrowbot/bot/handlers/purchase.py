"""Purchase flow: reserve, choose payment method, submit the receipt."""

import logging

from aiogram import Bot, F, Router
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, Message

from escrowbot.bot.common import describe_error, ensure_user, parse_id
from escrowbot.bot.keyboards import payment_method_keyboard
from escrowbot.config import get_settings
from escrowbot.errors import DuplicateActiveOrder, EscrowError, NotAvailable
from escrowbot.ledger.models import PaymentMethod
from escrowbot.services import (
    PaymentReceipt,
    PurchaseContext,
    get_order_service,
    get_reservation_service,
)

logger = logging.getLogger(__name__)

router = Router()


class PurchaseStates(StatesGroup):
    """FSM states for the purchase flow."""

    choosing_method = State()
    waiting_reference = State()
    waiting_screenshot = State()


@router.callback_query(F.data.startswith("order_account:"))
async def handle_order_account(callback: CallbackQuery, state: FSMContext) -> None:
    """Reserve the account and show the escrow payment instructions."""
    account_id = parse_id(callback.data)
    if account_id is None or not callback.from_user:
        await callback.answer()
        return

    user = await ensure_user(callback.from_user)

    try:
        account = await get_reservation_service().reserve(account_id, user.id)
    except EscrowError as e:
        await callback.answer(describe_error(e), show_alert=True)
        return

    await state.clear()
    await state.set_state(PurchaseStates.choosing_method)
    await state.update_data(account_id=account.id, price=account.price)

    settings = get_settings()
    receivers = "\n".join(f"  • {name}" for name in settings.escrow_receiver_names)
    minutes = int(settings.reservation_timeout_seconds // 60)
    text = f"""Order: {account.name}

Please pay {account.price} {settings.currency} to the escrow account held by:
{receivers}

The account is reserved for you for {minutes} minutes.
After paying, choose how you paid:"""

    await callback.answer("Account reserved")
    await callback.message.answer(text, reply_markup=payment_method_keyboard(account.id))


@router.callback_query(F.data.startswith("pay_method:"))
async def handle_payment_method(callback: CallbackQuery, state: FSMContext) -> None:
    if not callback.data:
        return

    _, method, account_id = callback.data.split(":", 2)
    data = await state.get_data()
    if data.get("account_id") != int(account_id):
        await callback.answer("This reservation is no longer active. Please order again.", show_alert=True)
        return

    await state.update_data(payment_method=method)
    if method == PaymentMethod.CBE.value:
        await state.set_state(PurchaseStates.waiting_screenshot)
        prompt = "Please upload a screenshot of your CBE payment receipt (as an image):"
    else:
        await state.set_state(PurchaseStates.waiting_reference)
        prompt = "Please enter your Telebirr receipt number:"

    await callback.message.answer(prompt)
    await callback.answer()


@router.callback_query(F.data.startswith("cancel_reservation:"))
async def handle_cancel_reservation(callback: CallbackQuery, state: FSMContext) -> None:
    account_id = parse_id(callback.data)
    if account_id is None or not callback.from_user:
        await callback.answer()
        return

    user = await ensure_user(callback.from_user)
    await get_reservation_service().cancel(account_id, user.id)
    await state.clear()
    await callback.message.edit_text("Reservation cancelled.")
    await callback.answer()


async def _submit(message: Message, state: FSMContext, receipt: PaymentReceipt) -> None:
    data = await state.get_data()
    user = await ensure_user(message.from_user)
    context = PurchaseContext(
        buyer_id=user.id,
        account_id=data["account_id"],
        amount=data["price"],
        payment_method=receipt.method,
    )

    await message.answer("🔍 Verifying your payment, please wait...")

    try:
        order = await get_order_service().submit_payment(context, receipt)
    except EscrowError as e:
        logger.info(f"Payment for account {context.account_id} by user {user.id} rejected: {e.code}")
        if isinstance(e, (NotAvailable, DuplicateActiveOrder)):
            await state.clear()
        await message.answer(f"❌ {describe_error(e)}")
        return

    await state.clear()
    await message.answer(f"✅ Payment verified and order created successfully!\nOrder ID: {order.id}")


@router.message(PurchaseStates.waiting_reference, F.text)
async def handle_receipt_reference(message: Message, state: FSMContext) -> None:
    """Telebirr: the buyer types the receipt number."""
    if not message.from_user:
        return

    receipt = PaymentReceipt(method=PaymentMethod.TELEBIRR, reference=message.text.strip())
    await _submit(message, state, receipt)


@router.message(PurchaseStates.waiting_screenshot, F.photo)
async def handle_receipt_screenshot(message: Message, state: FSMContext, bot: Bot) -> None:
    """CBE: the buyer uploads a screenshot of the receipt."""
    if not message.from_user:
        return

    # Highest resolution
    photo = message.photo[-1]
    image = await bot.download(photo)
    receipt = PaymentReceipt(method=PaymentMethod.CBE, image=image.getvalue())
    await _submit(message, state, receipt)


@router.message(PurchaseStates.waiting_screenshot)
async def handle_screenshot_expected(message: Message) -> None:
    await message.answer("Please send the receipt as an image.")
