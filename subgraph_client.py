"""
Position source backed by the pool indexer (GraphQL subgraph).
Fetches the owner's positions together with a snapshot of their pool.
"""
import logging
from typing import Dict, Any, List, Optional

import requests

from config import Config
from models import Pool, Position, TokenInfo
from utils import VenueQueryError, retry_on_failure

logger = logging.getLogger(__name__)

PAGE_SIZE = 500

POSITION_FIELDS = """
    id
    liquidity
    tickLower { tickIdx }
    tickUpper { tickIdx }
    pool {
      id
      tick
      feeTier
      token0 { id symbol decimals }
      token1 { id symbol decimals }
    }
"""

# id_gt cursor paging; skip is capped by the indexer
POSITIONS_BY_OWNER_QUERY = """
query PositionsByOwner($owner: Bytes!, $first: Int!, $lastId: ID!) {
  positions(where: {owner: $owner, id_gt: $lastId}, first: $first, orderBy: id, orderDirection: asc) {%s}
}
""" % POSITION_FIELDS

POOL_POSITIONS_QUERY = """
query PoolPositionsByOwner($owner: Bytes!, $pool: String!, $first: Int!, $lastId: ID!) {
  positions(where: {owner: $owner, pool: $pool, id_gt: $lastId}, first: $first, orderBy: id, orderDirection: asc) {%s}
}
""" % POSITION_FIELDS


class SubgraphClient:
    """Client for the position indexer"""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        """
        Initialize the subgraph client

        Args:
            config: Configuration object
            session: Optional requests session (a new one is created otherwise)
        """
        self.config = config
        self.url = config.SUBGRAPH_URL
        self.timeout = config.REQUEST_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if config.SUBGRAPH_API_KEY:
            self.session.headers.update({'Authorization': f"Bearer {config.SUBGRAPH_API_KEY}"})

        self._query = retry_on_failure(
            max_retries=config.MAX_RETRIES, delay=config.RETRY_DELAY_SECONDS
        )(self._query)

    def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Run a GraphQL query and return its data block"""
        response = self.session.post(
            self.url,
            json={'query': query, 'variables': variables},
            timeout=self.timeout
        )
        response.raise_for_status()
        payload = response.json()

        if payload.get('errors'):
            messages = "; ".join(str(error.get('message', error)) for error in payload['errors'])
            raise VenueQueryError(f"Subgraph query failed: {messages}")

        data = payload.get('data')
        if data is None:
            raise VenueQueryError("Subgraph response has no data")
        return data

    def fetch_positions_by_owner(self, owner: str) -> List[Position]:
        """
        Fetch every position held by owner, in indexer order

        Args:
            owner: Owner address

        Returns:
            List of positions with embedded pool snapshots
        """
        positions = self._fetch_all(POSITIONS_BY_OWNER_QUERY, {'owner': owner.lower()})
        logger.debug(f"Fetched {len(positions)} positions for {owner}")
        return positions

    def fetch_pool_positions(self, owner: str, pool_id: str) -> List[Position]:
        """
        Fetch the owner's positions in one pool

        Args:
            owner: Owner address
            pool_id: Pool address, compared case-insensitively

        Returns:
            Positions in the pool, in indexer order
        """
        positions = self._fetch_all(
            POOL_POSITIONS_QUERY, {'owner': owner.lower(), 'pool': pool_id.lower()}
        )
        logger.debug(f"Fetched {len(positions)} positions for {owner} in pool {pool_id}")
        return positions

    def _fetch_all(self, query: str, variables: Dict[str, Any]) -> List[Position]:
        """Page through a positions query by id cursor"""
        positions: List[Position] = []
        last_id = ""

        while True:
            data = self._query(query, {**variables, 'first': PAGE_SIZE, 'lastId': last_id})
            page = data.get('positions') or []
            positions.extend(self._parse_position(raw) for raw in page)

            if len(page) < PAGE_SIZE:
                break
            last_id = page[-1]['id']

        return positions

    @staticmethod
    def _parse_token(raw: Dict[str, Any]) -> TokenInfo:
        return TokenInfo.from_address(
            raw.get('id', ''),
            symbol=raw.get('symbol') or 'UNKNOWN',
            decimals=int(raw.get('decimals') or 18)
        )

    @classmethod
    def _parse_pool(cls, raw: Optional[Dict[str, Any]]) -> Optional[Pool]:
        # pools without an initialized price have no tick yet
        if not raw or raw.get('tick') is None:
            return None
        return Pool(
            pool_id=raw['id'],
            current_tick=int(raw['tick']),
            fee_tier=int(raw['feeTier']),
            token_a=cls._parse_token(raw.get('token0') or {}),
            token_b=cls._parse_token(raw.get('token1') or {})
        )

    @classmethod
    def _parse_position(cls, raw: Dict[str, Any]) -> Position:
        try:
            pool = cls._parse_pool(raw.get('pool'))
            return Position(
                position_id=str(raw['id']),
                pool_id=(raw.get('pool') or {}).get('id', ''),
                tick_lower=int(raw['tickLower']['tickIdx']),
                tick_upper=int(raw['tickUpper']['tickIdx']),
                liquidity=int(raw['liquidity']),
                pool=pool
            )
        except (KeyError, TypeError, ValueError) as e:
            raise VenueQueryError(f"Malformed position record {raw.get('id', '?')}: {e}") from e
