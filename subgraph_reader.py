import time
import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from flow_types import AccountSnapshot, AgreementType, DataSourceError, OutgoingFlow

logger = logging.getLogger("SubgraphReader")

MAX_ITEMS = 1000
REQUEST_TIMEOUT = 30


class SubgraphReader:
    """
    Paginated reads from the Superfluid subgraph.
    Every query is paged with an `id_gt` cursor and `first: MAX_ITEMS`; a short
    page ends the scan. Any bad response raises DataSourceError.
    """

    def __init__(self, url: str, session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT):
        if not url:
            raise ValueError("Subgraph URL not set")
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    # --- SNAPSHOT FETCHER ---

    def fetch_critical_snapshots(self, as_of_timestamp: Optional[int] = None,
                                 token: Optional[str] = None) -> List[AccountSnapshot]:
        """Accounts with a negative net flow rate whose maybe-critical time is before the cutoff."""
        if as_of_timestamp is None:
            as_of_timestamp = int(time.time())
        token_filter = f'token: "{token.lower()}",' if token else ""

        def query(last_id):
            return f"""{{
                accountTokenSnapshots(first: {MAX_ITEMS}, orderBy: id, orderDirection: asc,
                    where: {{
                        id_gt: "{last_id}",
                        totalNetFlowRate_lt: 0,
                        maybeCriticalAtTimestamp_lt: {as_of_timestamp},
                        {token_filter}
                    }}
                ) {{
                    id
                    balanceUntilUpdatedAt
                    maybeCriticalAtTimestamp
                    isLiquidationEstimateOptimistic
                    totalNetFlowRate
                    totalCFANetFlowRate
                    totalDeposit
                    token {{ id symbol }}
                    account {{ id }}
                }}
            }}"""

        records = self._query_all_pages(query, lambda data: data["accountTokenSnapshots"])
        return [self._to_snapshot(record) for record in records]

    # --- FLOW ENUMERATOR ---

    def list_outgoing_flows(self, token: str, account: str, include_pooled: bool = True) -> List[OutgoingFlow]:
        """Direct streams first, then pool distributions, each sorted by rate descending."""
        flows = self.get_direct_flows(token, account)
        if include_pooled:
            flows += self.get_pooled_flows(token, account)
        return flows

    def get_direct_flows(self, token: str, account: str) -> List[OutgoingFlow]:
        account_lc, token_lc = account.lower(), token.lower()

        def query(last_id):
            return f"""{{
                account(id: "{account_lc}") {{
                    outflows(first: {MAX_ITEMS}, orderBy: id, orderDirection: asc,
                        where: {{
                            token: "{token_lc}",
                            id_gt: "{last_id}",
                            currentFlowRate_not: "0"
                        }}
                    ) {{
                        id
                        currentFlowRate
                    }}
                }}
            }}"""

        def to_items(data):
            # unknown account -> no outflows
            if data["account"] is None:
                return []
            return data["account"]["outflows"]

        flows = [self._to_direct_flow(record) for record in self._query_all_pages(query, to_items)]
        return sorted(flows, key=lambda flow: flow.flow_rate, reverse=True)

    def get_pooled_flows(self, token: str, account: str) -> List[OutgoingFlow]:
        account_lc, token_lc = account.lower(), token.lower()

        def query(last_id):
            return f"""{{
                poolDistributors(first: {MAX_ITEMS}, orderBy: id, orderDirection: asc,
                    where: {{
                        account: "{account_lc}",
                        id_gt: "{last_id}",
                        pool_: {{ token: "{token_lc}" }},
                        flowRate_gt: "0"
                    }}
                ) {{
                    id
                    flowRate
                    pool {{ id flowRate }}
                }}
            }}"""

        flows = [
            self._to_pooled_flow(record, account_lc, token_lc)
            for record in self._query_all_pages(query, lambda data: data["poolDistributors"])
        ]
        return sorted(flows, key=lambda flow: flow.flow_rate, reverse=True)

    # --- TOKENS ---

    def list_super_tokens(self, is_listed: bool = True) -> List[Dict[str, Any]]:
        listed = "true" if is_listed else "false"

        def query(last_id):
            return f"""{{
                tokens(first: {MAX_ITEMS}, orderBy: id, orderDirection: asc,
                    where: {{ id_gt: "{last_id}", isListed: {listed}, isSuperToken: true }}
                ) {{
                    id
                    name
                    symbol
                    isListed
                    isNativeAssetSuperToken
                }}
            }}"""

        tokens = self._query_all_pages(query, lambda data: data["tokens"])
        for token in tokens:
            if not isinstance(token, dict) or not isinstance(token.get("id"), str):
                raise DataSourceError(f"malformed token record {token!r}")
        return tokens

    # --- TRANSPORT ---

    def _graphql(self, query: str) -> Dict[str, Any]:
        try:
            response = self.session.post(self.url, json={"query": query}, timeout=self.timeout)
        except requests.RequestException as e:
            raise DataSourceError(f"subgraph request failed: {e}") from e

        if response.status_code != 200:
            raise DataSourceError(f"bad response {response.status_code} from subgraph")
        if not response.content:
            raise DataSourceError("empty response data")
        try:
            body = response.json()
        except ValueError as e:
            raise DataSourceError(f"subgraph returned non-JSON body: {e}") from e
        if not isinstance(body, dict):
            raise DataSourceError(f"unexpected subgraph body: {body!r}")
        if body.get("errors"):
            raise DataSourceError(f"subgraph errors: {body['errors']}")
        if not isinstance(body.get("data"), dict):
            raise DataSourceError("subgraph response has no data")
        return body["data"]

    def _query_all_pages(self, query_fn: Callable[[str], str],
                         to_items: Callable[[Dict[str, Any]], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        last_id = ""
        items = []
        while True:
            data = self._graphql(query_fn(last_id))
            try:
                new_items = to_items(data)
                if not isinstance(new_items, list):
                    raise TypeError(f"expected a list, got {type(new_items).__name__}")
            except (KeyError, TypeError) as e:
                raise DataSourceError(f"malformed subgraph payload: {e}") from e

            items.extend(new_items)
            if len(new_items) < MAX_ITEMS:
                break
            try:
                last_id = new_items[-1]["id"]
            except (KeyError, TypeError) as e:
                raise DataSourceError(f"record without id in full page: {e}") from e
        logger.debug(f"📄 Fetched {len(items)} records")
        return items

    # --- PARSING ---

    @staticmethod
    def _to_int(value) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise DataSourceError(f"expected an integer, got {value!r}") from e

    def _to_direct_flow(self, record: Dict[str, Any]) -> OutgoingFlow:
        try:
            # stream id: sender-receiver-token-revision
            parts = record["id"].split("-")
            if len(parts) < 3:
                raise DataSourceError(f"unexpected stream id {record['id']}")
            return OutgoingFlow(
                sender=parts[0],
                receiver=parts[1],
                token=parts[2],
                flow_rate=self._to_int(record["currentFlowRate"]),
                agreement=AgreementType.DIRECT,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise DataSourceError(f"malformed stream record {record!r}: {e}") from e

    def _to_pooled_flow(self, record: Dict[str, Any], account: str, token: str) -> OutgoingFlow:
        try:
            return OutgoingFlow(
                sender=account,
                receiver=record["pool"]["id"],
                token=token,
                flow_rate=self._to_int(record["flowRate"]),
                agreement=AgreementType.POOLED,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise DataSourceError(f"malformed pool distributor record {record!r}: {e}") from e

    def _to_snapshot(self, record: Dict[str, Any]) -> AccountSnapshot:
        try:
            maybe_critical = record.get("maybeCriticalAtTimestamp")
            return AccountSnapshot(
                id=record["id"],
                account=record["account"]["id"],
                token=record["token"]["id"],
                token_symbol=record["token"].get("symbol") or "",
                total_net_flow_rate=self._to_int(record["totalNetFlowRate"]),
                direct_net_flow_rate=self._to_int(record["totalCFANetFlowRate"]),
                total_deposit=self._to_int(record.get("totalDeposit") or 0),
                maybe_critical_at=self._to_int(maybe_critical) if maybe_critical is not None else None,
                balance_until_updated_at=self._to_int(record.get("balanceUntilUpdatedAt") or 0),
                is_liquidation_estimate_optimistic=bool(record.get("isLiquidationEstimateOptimistic")),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise DataSourceError(f"malformed account snapshot {record!r}: {e}") from e
