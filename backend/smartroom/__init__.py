"""
Golden Peacock 智能客房后端
服务请求生命周期、房间消息与基于角色的访问控制
"""
