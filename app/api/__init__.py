# app/api/__init__.py
"""
HTTP 层：

- routers/：每个资源一个路由模块（+ 同名 *_schemas.py）
- deps.py：actor / trace 依赖 + 事务执行 / Problem 化
- problem.py：统一错误响应形状
"""

__all__ = []
