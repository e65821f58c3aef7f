"""
通知渠道：站内通知之外的外部投递（邮件）
"""
