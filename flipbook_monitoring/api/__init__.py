"""HTTP routers for the monitoring service"""
