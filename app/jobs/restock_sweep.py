"""过期补货计划巡检本地执行脚本"""

import argparse
import logging
from app.db.session import SessionLocal
from app.services.inventory_monitor import InventoryMonitor
from app.services.restock_service import RestockService
from app.core.redis import redis_client, redlock

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def run_sweep(dry_run: bool = False, notify: bool = None) -> int:
    """执行过期补货计划巡检

    Args:
        dry_run: 是否为试运行模式（只统计，不修改计划、不发邮件）
        notify: 是否发送延期通知，为空时按配置

    Returns:
        过期计划数量
    """
    db = SessionLocal()
    try:
        if dry_run:
            overdue = RestockService(db).get_overdue_schedules()
            for schedule in overdue:
                logger.info(
                    f"待过期: schedule_id={schedule.id} product_id={schedule.product_id} "
                    f"variant_id={schedule.variant_id or '-'} expected={schedule.expected_date.isoformat()}"
                )
            logger.info(f"试运行模式：发现 {len(overdue)} 个过期补货计划")
            return len(overdue)

        monitor = InventoryMonitor(db, redis_client, redlock)
        result = monitor.process_expired_restock_dates(notify=notify)
        logger.info(f"巡检完成：{result['message']}，发送 {result['notifications_sent']} 条延期通知")
        return result["expired_count"]

    except Exception as e:
        logger.error(f"巡检执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

def main():
    """主函数"""
    parser = argparse.ArgumentParser(description='过期补货计划巡检工具')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='试运行模式，只统计不执行'
    )
    parser.add_argument(
        '--no-notify',
        action='store_true',
        help='不发送延期通知'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='详细输出模式'
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        result = run_sweep(args.dry_run, notify=False if args.no_notify else None)
        if args.dry_run:
            print(f"📊 试运行结果：发现 {result} 个过期补货计划")
        else:
            print(f"✅ 巡检完成：处理了 {result} 个补货计划")
    except Exception as e:
        print(f"❌ 执行失败: {str(e)}")
        return 1

    return 0

if __name__ == "__main__":
    exit(main())
