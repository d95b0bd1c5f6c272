# app/db/__init__.py
"""数据库层：ORM Base、engine / AsyncSession 工厂与 FastAPI 依赖（见 app.db.session）。"""
