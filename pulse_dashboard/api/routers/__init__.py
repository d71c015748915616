"""API 路由"""
