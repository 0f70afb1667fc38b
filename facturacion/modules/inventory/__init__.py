"""
Módulo de Inventario

- InventoryLedger: único punto de modificación de existencias, con bloqueo
  de filas en orden de id y sin permitir existencias negativas.
- Entradas (InventoryEntry): mercancía recibida, ligada a una factura de
  proveedor o independiente con nota.
- Salidas (StockOut): mermas y consumo interno no facturado.
"""
