from dbclient.options import iterdict_data_loader

from libb import Setting

Setting.unlock()

mariadb = Setting()
mariadb.drivername='mariadb'
mariadb.hostname='localhost'
mariadb.username='test'
mariadb.password='test'
mariadb.database='test_db'
mariadb.port=3306
mariadb.timeout=30
mariadb.data_loader=iterdict_data_loader
mariadb.use_pool=False

mssql = Setting()
mssql.drivername='mssql'
mssql.hostname='localhost'
mssql.username='sa'
mssql.password='StrongPassw0rd!'
mssql.database='master'
mssql.port=1433
mssql.timeout=30
mssql.odbc_driver='ODBC Driver 18 for SQL Server'
mssql.trust_server_certificate=True
mssql.data_loader=iterdict_data_loader
mssql.use_pool=False

Setting.lock()
