"""
结果拉取编排

并发拉取一组检查的原始结果。单个检查拉取失败（网络错误、格式错误）时
返回空列表而不是中断整批，部分数据总比没有数据好。
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from .cache import EntityCache
from .client import BackendClient
from .errors import DashboardError
from .models import Check, RawResult

logger = logging.getLogger(__name__)


class FetchOrchestrator:
    """
    拉取编排器

    Args:
        client: 后端客户端
        cache: 检查列表缓存
        page_size: 每个检查拉取的结果数量上限
    """

    def __init__(self, client: BackendClient, cache: EntityCache, page_size: int = 100):
        self.client = client
        self.cache = cache
        self.page_size = page_size

    async def fetch_check_results(
        self,
        check_id: int,
        since: Optional[datetime],
        until: Optional[datetime],
        page_size: Optional[int] = None,
    ) -> List[RawResult]:
        """拉取单个检查的结果，失败时返回空列表"""
        try:
            page = await self.client.get_results(
                check_id,
                from_ts=since,
                to_ts=until,
                page=1,
                page_size=page_size or self.page_size,
            )
        except DashboardError as e:
            logger.warning(f"Failed to load results for check {check_id}: {e}")
            return []
        return page.results

    async def fetch_results(
        self,
        check_ids: Sequence[int],
        since: Optional[datetime],
        until: Optional[datetime],
        page_size: Optional[int] = None,
    ) -> List[RawResult]:
        """
        并发拉取多个检查的结果并合并

        所有请求完成（成功或回退为空）后才合并。
        """
        if not check_ids:
            return []

        tasks = [self.fetch_check_results(check_id, since, until, page_size) for check_id in check_ids]
        per_check = await asyncio.gather(*tasks)

        merged: List[RawResult] = []
        for results in per_check:
            merged.extend(results)

        logger.debug(f"Fetched {len(merged)} results from {len(check_ids)} checks")
        return merged

    async def get_checks(self, domain_id: int, fresh: bool = False) -> List[Check]:
        """
        获取域名下的检查列表

        优先使用缓存；fresh=True 时先使缓存失效（首次渲染域名时使用）。
        列表请求失败时异常向上抛出，由调用方决定如何展示。
        """
        if fresh:
            await self.cache.invalidate(domain_id)
        else:
            cached = await self.cache.get(domain_id)
            if cached is not None:
                return cached

        generation = await self.cache.generation(domain_id)
        checks = await self.client.list_checks(domain_id)
        # 请求期间缓存被失效：本轮照常使用，但不写回
        if not await self.cache.put_if_unchanged(domain_id, checks, generation):
            logger.debug(f"Check list for domain {domain_id} invalidated during fetch, not cached")
        return checks

    async def load_domain_results(
        self,
        domain_id: int,
        since: Optional[datetime],
        until: Optional[datetime],
        fresh: bool = False,
        page_size: Optional[int] = None,
    ) -> List[RawResult]:
        """单个域名：一次缓存查找/填充 + 一次并发拉取"""
        checks = await self.get_checks(domain_id, fresh=fresh)
        return await self.fetch_results([c.id for c in checks], since, until, page_size)
