"""基础设施层：JSON 日志与 JSON 文件存储。"""
