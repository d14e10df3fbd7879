"""Inventory and promotion lookups plus the precomputed summaries fed to the prompt.

Every number the assistant is allowed to state (prices, price ranges, discount
amounts, HP listings, comparison deltas) is rendered here as text so the model
never does arithmetic on raw tables.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .utils import format_hp, format_money


@dataclass
class Motor:
    """Normalized view of a motor record with a raw backing dict."""
    id: str
    model_display: str
    horsepower: float
    msrp: Optional[float]
    sale_price: Optional[float]
    family: str
    raw: Dict[str, Any]

    @property
    def price(self) -> Optional[float]:
        return self.sale_price or self.msrp or None


@dataclass
class Promotion:
    name: str
    discount_percentage: float
    discount_fixed_amount: float
    priority: int
    start_date: Optional[str]
    end_date: Optional[str]
    is_active: bool


@dataclass
class InventoryMeta:
    """Metadata describing the inventory file version for logging."""
    file_name: str
    updated_at: str
    sha256: str


class InventoryLoader:
    """File-backed motor inventory and promotion source."""

    def __init__(self, path: Path) -> None:
        # Store the inventory file location for subsequent loads.
        self._path = path
        self._motors: Optional[List[Motor]] = None
        self._promotions: Optional[List[Promotion]] = None
        self.meta: Optional[InventoryMeta] = None

    def load(self) -> Tuple[List[Motor], List[Promotion], InventoryMeta]:
        """Purpose: Load and normalize motors and promotions from the inventory file.
        Inputs/Outputs: No inputs; returns motors, promotions, and InventoryMeta.
        Side Effects / State: Reads file contents and caches the parsed lists.
        Dependencies: Uses json and hashlib.
        Failure Modes: JSON decode errors raise exceptions to the caller.
        If Removed: The prompt has no live inventory or promotion facts.
        Testing Notes: Load a temp inventory file and check normalization.
        """
        # Read bytes for hashing and parse JSON into normalized records.
        raw_bytes = self._path.read_bytes()
        sha256 = hashlib.sha256(raw_bytes).hexdigest()
        updated_at = datetime.fromtimestamp(self._path.stat().st_mtime).isoformat()
        data = json.loads(raw_bytes.decode("utf-8-sig"))
        if not isinstance(data, dict):
            data = {}

        motors: List[Motor] = []
        for item in data.get("motors", []):
            if not isinstance(item, dict) or item.get("horsepower") is None:
                continue
            motors.append(
                Motor(
                    id=str(item.get("id") or ""),
                    model_display=str(item.get("model_display") or item.get("model") or "").strip(),
                    horsepower=float(item["horsepower"]),
                    msrp=_as_float(item.get("msrp")),
                    sale_price=_as_float(item.get("sale_price")),
                    family=str(item.get("family") or "").strip(),
                    raw=item,
                )
            )
        motors.sort(key=lambda m: m.horsepower)

        promotions: List[Promotion] = []
        for item in data.get("promotions", []):
            if not isinstance(item, dict):
                continue
            promotions.append(
                Promotion(
                    name=str(item.get("name") or "").strip(),
                    discount_percentage=_as_float(item.get("discount_percentage")) or 0.0,
                    discount_fixed_amount=_as_float(item.get("discount_fixed_amount")) or 0.0,
                    priority=int(item.get("priority") or 0),
                    start_date=item.get("start_date"),
                    end_date=item.get("end_date"),
                    is_active=bool(item.get("is_active", True)),
                )
            )

        self._motors = motors
        self._promotions = promotions
        self.meta = InventoryMeta(file_name=self._path.name, updated_at=updated_at, sha256=sha256)
        return motors, promotions, self.meta

    def list_motors(self) -> List[Motor]:
        if self._motors is None:
            self.load()
        return list(self._motors or [])

    def active_promotions(self, today: Optional[date] = None, limit: int = 5) -> List[Promotion]:
        """Active promotions whose date window contains today, highest priority first."""
        if self._promotions is None:
            self.load()
        day = (today or date.today()).isoformat()
        active = [
            promo
            for promo in self._promotions or []
            if promo.is_active
            and (not promo.start_date or promo.start_date <= day)
            and (not promo.end_date or promo.end_date >= day)
        ]
        active.sort(key=lambda p: p.priority, reverse=True)
        return active[:limit]

    def motors_for_hp(self, hp: float) -> List[Motor]:
        motors = [m for m in self.list_motors() if m.horsepower == hp]
        return sorted(motors, key=lambda m: m.msrp or 0)

    def motor_details(self, motor_id: str) -> Optional[Motor]:
        if not motor_id:
            return None
        return next((m for m in self.list_motors() if m.id == motor_id), None)


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_grouped_inventory_summary(motors: Sequence[Motor]) -> str:
    """Purpose: Render a compact inventory line grouped by horsepower.
    Inputs/Outputs: Input is motors; output like "9.9HP: $3,645-$4,210 (FourStroke) [3] | ...".
    Side Effects / State: None.
    Dependencies: format_money/format_hp.
    Failure Modes: Groups without prices render as TBD.
    If Removed: The model would have to infer price ranges from raw rows.
    Testing Notes: Two motors at one HP with different prices yield a range.
    """
    # Bucket motors by HP preserving ascending order.
    by_hp: Dict[float, List[Motor]] = {}
    for motor in motors:
        by_hp.setdefault(motor.horsepower, []).append(motor)

    lines: List[str] = []
    for hp in sorted(by_hp):
        models = by_hp[hp]
        prices = [m.price for m in models if m.price and m.price > 0]
        if not prices:
            price_str = "TBD"
        elif min(prices) == max(prices):
            price_str = format_money(min(prices))
        else:
            price_str = f"{format_money(min(prices))}-{format_money(max(prices))}"
        families: List[str] = []
        for m in models:
            if m.family and m.family not in families:
                families.append(m.family)
        family_str = f" ({'/'.join(families)})" if families else ""
        lines.append(f"{format_hp(hp)}HP: {price_str}{family_str} [{len(models)}]")
    return " | ".join(lines)


def build_hp_range(motors: Sequence[Motor]) -> str:
    if not motors:
        return "Contact for availability"
    hps = [m.horsepower for m in motors]
    return f"{format_hp(min(hps))}HP to {format_hp(max(hps))}HP"


def build_promotion_summary(promotions: Sequence[Promotion], limit: int = 3) -> str:
    """Render promotion names with their discount already computed as text."""
    parts = []
    for promo in list(promotions)[:limit]:
        if promo.discount_percentage > 0:
            discount = f"{format_hp(promo.discount_percentage)}% off"
        else:
            discount = f"{format_money(promo.discount_fixed_amount)} off"
        parts.append(f"{promo.name}: {discount}")
    return " | ".join(parts)


def build_hp_listing(hp: float, matches: Sequence[Motor], all_motors: Sequence[Motor]) -> str:
    """Purpose: Build the HP-specific block with clickable motor links or nearby options.
    Inputs/Outputs: Inputs are the requested HP, exact matches and full inventory;
        output is a markdown section.
    Side Effects / State: None.
    Dependencies: format_money/format_hp.
    Failure Modes: No nearby HP values yields an empty suggestion list.
    If Removed: "What 30HP do you have?" answers lose their links.
    Testing Notes: Missing HP lists up to four HP values within 15.
    """
    label = format_hp(hp)
    if matches:
        lines = [
            f"- [{m.model_display}](/quote/motor-selection?motor={m.id}) - {format_money(m.price)}"
            for m in matches
        ]
        return (
            f"## {label}HP MOTORS - WE HAVE {len(matches)}:\n"
            + "\n".join(lines)
            + "\n\nProvide these as clickable links. Customer can tap to view that motor."
        )
    available = sorted({m.horsepower for m in all_motors})
    nearby = [h for h in available if abs(h - hp) <= 15][:4]
    suggestions = ", ".join(f"{format_hp(h)}HP" for h in nearby)
    return f"## NO {label}HP MOTORS AVAILABLE\nSuggest these nearby options instead: {suggestions}"


def build_comparison_block(hp1: float, hp2: float, all_motors: Sequence[Motor], family_info) -> str:
    """Side-by-side block for an "X vs Y" question with the price delta precomputed."""
    motor1 = next((m for m in all_motors if m.horsepower == hp1), None)
    motor2 = next((m for m in all_motors if m.horsepower == hp2), None)
    if not motor1 or not motor2:
        return ""
    lines = [f"## COMPARISON REQUEST: {format_hp(hp1)}HP vs {format_hp(hp2)}HP", ""]
    for motor in (motor1, motor2):
        lines.append(f"**{format_hp(motor.horsepower)}HP {motor.family or 'FourStroke'}**")
        lines.append(f"- Price: {format_money(motor.price or 0)}")
        blurb = family_info(motor.family)
        if blurb:
            lines.append(f"- {blurb}")
        lines.append("")
    if motor1.price and motor2.price:
        lines.append(f"Price difference: {format_money(abs(motor2.price - motor1.price))}")
    lines.append(
        "Provide a helpful, balanced comparison covering: power difference, price difference, "
        "best use cases for each, and your recommendation based on their needs."
    )
    return "\n".join(lines)
