import asyncio
import csv
import io
import re
import zipfile
from collections import Counter
from typing import Dict, List, Optional

import pyarrow as pa
import pyarrow.parquet as pq
import rlp
from aiohttp import web

UINT256_MAX = str(2**256 - 1)

SOURCELOG_HEADER = ["timestamp_ms", "hash", "source"]
TRANSACTION_DATA_HEADER = [
    "timestamp_ms",
    "hash",
    "chain_id",
    "from",
    "to",
    "value",
    "nonce",
    "gas",
    "gas_price",
    "gas_tip_cap",
    "gas_fee_cap",
    "data_size",
    "data_4bytes",
]


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def address(n: int) -> str:
    return "0x" + f"{n:040x}"


def signed_tx(nonce: int, to: str, value: int, data: bytes, legacy: bool = False) -> bytes:
    """EIP-1559 or legacy envelope with a placeholder signature"""
    recipient = bytes.fromhex(to[2:]) if to else b""
    if legacy:
        return rlp.encode([nonce, 30_000_000_000, 21000, recipient, value, data, 37, 1, 1])
    body = [1, nonce, 1_000_000_000, 30_000_000_000, 21000, recipient, value, data, [], 1, 1, 1]
    return b"\x02" + rlp.encode(body)


def tx_row(
    n: int,
    timestamp_ms: int,
    to: Optional[str] = "default",
    value: str = "1000",
    data: bytes = b"\xa9\x05\x9c\xbb" + b"\x00" * 64,
) -> Dict[str, str]:
    to = address(0xB0B) if to == "default" else (to or "")
    return {
        "timestamp_ms": str(timestamp_ms),
        "hash": tx_hash(n),
        "chain_id": "1",
        "from": address(0xF000 + n).upper().replace("0X", "0x"),
        "to": to,
        "value": value,
        "nonce": str(n),
        "gas": "21000",
        "gas_price": "30000000000",
        "gas_tip_cap": "1000000000",
        "gas_fee_cap": "30000000000",
        "data_size": str(len(data)),
        "data_4bytes": "0x" + data[:4].hex() if data else "",
        "raw_tx": "0x" + signed_tx(n, to, int(value), data).hex(),
    }


def _csv_bytes(header: List[str], rows: List[Dict[str, str]]) -> bytes:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=header, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue().encode()


def zip_bytes(name: str, payload: bytes) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(name, payload)
    return buf.getvalue()


def sourcelog_zip(day: str, rows: List[Dict[str, str]]) -> bytes:
    return zip_bytes(f"{day}_sourcelog.csv", _csv_bytes(SOURCELOG_HEADER, rows))


def transaction_data_zip(day: str, rows: List[Dict[str, str]]) -> bytes:
    return zip_bytes(f"{day}.csv", _csv_bytes(TRANSACTION_DATA_HEADER, rows))


def transactions_parquet(rows: List[Dict[str, str]]) -> bytes:
    """Provider style parquet: camelCase names, typed timestamp and dataSize"""
    table = pa.table(
        {
            "timestamp": pa.array([int(r["timestamp_ms"]) for r in rows], type=pa.timestamp("ms")),
            "hash": [r["hash"] for r in rows],
            "chainId": [r["chain_id"] for r in rows],
            "from": [r["from"] for r in rows],
            "to": [r["to"] for r in rows],
            "value": [r["value"] for r in rows],
            "nonce": [r["nonce"] for r in rows],
            "gas": [r["gas"] for r in rows],
            "gasPrice": [r["gas_price"] for r in rows],
            "gasTipCap": [r["gas_tip_cap"] for r in rows],
            "gasFeeCap": [r["gas_fee_cap"] for r in rows],
            "dataSize": pa.array([int(r["data_size"]) for r in rows], type=pa.int64()),
            "data4Bytes": [r["data_4bytes"] for r in rows],
            "rawTx": [r["raw_tx"] for r in rows],
        }
    )
    buf = io.BytesIO()
    pq.write_table(table, buf)
    return buf.getvalue()


def sourcelog_rows(day_offset_ms: int = 0) -> List[Dict[str, str]]:
    base = 1693526400000 + day_offset_ms
    return [
        {"timestamp_ms": str(base + 300), "hash": tx_hash(3), "source": "mempoolguru"},
        {"timestamp_ms": str(base + 100), "hash": tx_hash(1), "source": "local"},
        {"timestamp_ms": str(base + 200), "hash": tx_hash(2), "source": "blxr"},
        {"timestamp_ms": str(base + 250), "hash": tx_hash(1), "source": "blxr"},
    ]


def transaction_rows(day_offset_ms: int = 0) -> List[Dict[str, str]]:
    base = 1693526400000 + day_offset_ms
    return [
        tx_row(3, base + 300, value=UINT256_MAX),
        tx_row(1, base + 100, data=b""),
        tx_row(2, base + 200, to=None, data=b"\x60\x80\x60\x40" + b"\x00" * 200),
        tx_row(4, base + 150, data=b"\x01\x02"),
    ]


class FakeProvider:
    """In-process stand-in for the mempool dumpster web index and files"""

    MONTHS_PAGE = "/index.html"

    def __init__(self):
        self.months: List[str] = []
        self.days: Dict[str, List[str]] = {}
        self.files: Dict[str, bytes] = {}
        # path -> statuses to answer before serving the real content
        self.failures: Dict[str, List[int]] = {}
        # path -> seconds to stall before answering, one entry per request
        self.delays: Dict[str, List[float]] = {}
        # path -> bytes sent before the connection is dropped, one entry per request
        self.cutoffs: Dict[str, List[int]] = {}
        self.requests: Counter = Counter()

    def publish_day(self, day: str, sourcelog: bytes, transaction_data: bytes, transactions: bytes):
        month = day[:7]
        if month not in self.months:
            self.months.append(month)
        self.days.setdefault(month, []).append(day)
        self.files[f"/ethereum/mainnet/{month}/{day}_sourcelog.csv.zip"] = sourcelog
        self.files[f"/ethereum/mainnet/{month}/{day}.csv.zip"] = transaction_data
        self.files[f"/ethereum/mainnet/{month}/{day}.parquet"] = transactions

    def publish_sample_day(self, day: str):
        self.publish_day(
            day,
            sourcelog_zip(day, sourcelog_rows()),
            transaction_data_zip(day, transaction_rows()),
            transactions_parquet(transaction_rows()),
        )

    def months_html(self) -> str:
        items = "".join(
            f'<li><a href="ethereum/mainnet/{m}/index.html">{m}</a></li>' for m in self.months
        )
        return f'<html><body><ul class="root-months">{items}</ul></body></html>'

    def days_html(self, month: str) -> str:
        rows = []
        for day in self.days.get(month, []):
            for name in (f"{day}.csv.zip", f"{day}.parquet", f"{day}_sourcelog.csv.zip"):
                rows.append(
                    f'<tr class="c1"><td class="fn"><a href="{name}">{name}</a></td>'
                    f'<td class="fs">1 MB</td></tr>'
                )
        return (
            '<html><body><table class="pure-table"><thead><tr><th>File</th></tr></thead>'
            f"<tbody>{''.join(rows)}</tbody></table></body></html>"
        )

    async def handle(self, request: web.Request) -> web.StreamResponse:
        path = request.path
        self.requests[path] += 1

        stalls = self.delays.get(path)
        if stalls:
            await asyncio.sleep(stalls.pop(0))

        pending = self.failures.get(path)
        if pending:
            return web.Response(status=pending.pop(0), text="injected failure")

        cutoffs = self.cutoffs.get(path)
        if cutoffs and path in self.files:
            return await self._drop_midway(request, self.files[path], cutoffs.pop(0))

        if path == self.MONTHS_PAGE:
            return web.Response(text=self.months_html(), content_type="text/html")

        m = re.match(r"^/ethereum/mainnet/(\d{4}-\d{2})/index\.html$", path)
        if m is not None:
            if m.group(1) not in self.days:
                return web.Response(status=404)
            return web.Response(text=self.days_html(m.group(1)), content_type="text/html")

        if path in self.files:
            return web.Response(body=self.files[path], content_type="application/octet-stream")

        return web.Response(status=404)

    async def _drop_midway(self, request: web.Request, body: bytes, sent: int):
        response = web.StreamResponse(headers={"Content-Length": str(len(body))})
        await response.prepare(request)
        await response.write(body[:sent])
        request.transport.close()
        return response

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/{tail:.*}", self.handle)
        return app
