"""Profile bootstrap: multi-endpoint retrieval with local cache fallback."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from gridloss.cache import LocalCache
from gridloss.config import Configuration
from gridloss.errors import CacheError, GridLossError, ProfileLoadError
from gridloss.profiles import (
    Equipment,
    TopologyProfile,
    parse_equipment_data,
    parse_topology_data,
)
from gridloss.webapi import ProfileClient

logger = logging.getLogger(__name__)

API_GET_TOPOLOGY = "/api/topology/graph"
API_GET_EQUIPMENT = "/api/equipment"

T = TypeVar("T")


class ProfileLoader:
    """
    Loads the topology and equipment profiles.

    Every configured API host is tried in order (logon, fetch, parse); the
    first success is written to the local cache. When every host fails the
    cache is used instead. The parsed documents are installed on the loader
    only once they are complete.
    """

    def __init__(
        self,
        config: Configuration,
        client_factory: Optional[Callable[..., ProfileClient]] = None,
        cache_factory: Callable[[str], LocalCache] = LocalCache,
    ) -> None:
        self.config = config
        self.client_factory = client_factory or ProfileClient
        self.cache_factory = cache_factory

        self.topology: Optional[TopologyProfile] = None
        self.equipment_by_id: Dict[int, Equipment] = {}

    def load_topology(self, timeout: float, use_cache_only: bool, cache_path: str) -> TopologyProfile:
        """
        Load the topology profile.

        Args:
            timeout: Per-request timeout in seconds
            use_cache_only: Skip the API and read the cache
            cache_path: Location of the cached document

        Returns:
            The parsed topology, also stored on ``self.topology``

        Raises:
            GridLossError: If no source produced a valid document, or the
                cache could not be written while ``strict_cache`` is set
        """
        profile, save_error = self._load(
            "topology profile", API_GET_TOPOLOGY, parse_topology_data,
            timeout, use_cache_only, cache_path,
        )
        self.topology = profile
        self._check_save(save_error)
        return profile

    def load_equipment(self, timeout: float, use_cache_only: bool, cache_path: str) -> Dict[int, Equipment]:
        """Load the equipment profile and merge it into ``self.equipment_by_id``."""
        equipments, save_error = self._load(
            "equipment profile", API_GET_EQUIPMENT, parse_equipment_data,
            timeout, use_cache_only, cache_path,
        )
        merged = dict(self.equipment_by_id)
        for equipment in equipments:
            merged[equipment.id] = equipment
        self.equipment_by_id = merged
        self._check_save(save_error)
        return merged

    def _load(
        self,
        kind: str,
        api_path: str,
        parse: Callable[[bytes], T],
        timeout: float,
        use_cache_only: bool,
        cache_path: str,
    ) -> Tuple[T, Optional[CacheError]]:
        cache = self.cache_factory(cache_path)

        if use_cache_only:
            logger.info(f"Loading {kind} from local cache ({cache_path})")
            return parse(cache.load()), None

        api = self.config.config_api
        urls: List[str] = [u.strip() for u in api.url if u and u.strip()]
        if not urls:
            raise ProfileLoadError("no config_api endpoints configured")

        last_error: GridLossError = ProfileLoadError("unknown error. Check configuration file")
        data: Optional[bytes] = None
        result = None
        loaded = False

        for base_url in urls:
            client = self.client_factory(base_url, api.hostname, timeout)
            try:
                logger.debug(f"Logon to {base_url} as {api.username}")
                try:
                    client.logon(api.username, api.password)
                except GridLossError as e:
                    logger.error(f"Failed to logon: {e}")
                    last_error = e
                    continue

                logger.debug(f"Getting {kind} ...")
                try:
                    data = client.get_profile(self.config.grid_losses.api_prefix + api_path)
                except GridLossError as e:
                    logger.error(f"Failed to get {kind}: {e}")
                    last_error = e
                    continue

                try:
                    result = parse(data)
                except GridLossError as e:
                    logger.error(f"Failed to unmarshal {kind}: {e}")
                    last_error = e
                    continue

                loaded = True
                break
            finally:
                client.close()

        if loaded:
            save_error = None
            try:
                cache.save(data)
            except CacheError as e:
                logger.error(f"Failed to write to local cache ({cache_path}): {e}")
                save_error = e
            if cache.is_changed:
                logger.info("Configuration changed from the previous loading")
            return result, save_error

        logger.error(f"Failed to load {kind} from API host: {last_error}")
        logger.info(f"Loading from local cache ({cache_path})")
        try:
            result = parse(cache.load())
        except GridLossError as e:
            logger.error(f"Failed to load {kind} from local cache: {e}")
            raise last_error
        return result, None

    def _check_save(self, save_error: Optional[CacheError]) -> None:
        if save_error is None:
            return
        if self.config.grid_losses.strict_cache:
            raise save_error
        logger.warning(f"Continuing without a refreshed cache: {save_error}")
