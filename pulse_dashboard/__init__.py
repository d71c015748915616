"""
Pulse Dashboard - 健康检查结果仪表盘服务

负责：
- 每 30s 从检查后端拉取域名、检查和原始结果
- 按 1 分钟窗口聚合为滚动统计桶
- 按实体 id 同步视图，原地更新图表
- 提供 REST API 给前端
"""

__version__ = "1.0.0"
